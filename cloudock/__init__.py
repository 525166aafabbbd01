"""
Cloudock - OpenStack cluster provisioning and Docker container deployment.

Nodes, security groups, and containers of a cluster are declared once in a
configuration file and driven through their lifecycle from the command line.
"""

__version__ = "0.1.0"

from cloudock.core.domain.models import (
    ClusterConfig,
    CloudockError,
    ConfigurationError,
    ConvergenceTimeoutError,
    OperatorAbortedError,
    ProviderError,
    RunReport,
    Selection,
    SmokeTestError,
)
from cloudock.core.domain.services.config_loader import load_config
from cloudock.orchestrator import Cloudock

__all__ = [
    # Main entry point
    "Cloudock",
    "load_config",
    # Models
    "ClusterConfig",
    "RunReport",
    "Selection",
    # Errors
    "CloudockError",
    "ConfigurationError",
    "ProviderError",
    "ConvergenceTimeoutError",
    "OperatorAbortedError",
    "SmokeTestError",
]
