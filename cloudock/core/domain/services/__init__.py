"""Domain services - orchestration engine."""

from cloudock.core.domain.services.config_loader import ClusterConfigLoader, load_config
from cloudock.core.domain.services.containers import ContainerDeploymentService
from cloudock.core.domain.services.nodes import NodeLifecycleService
from cloudock.core.domain.services.polling import Deadline, poll_until
from cloudock.core.domain.services.progress import ProgressTable
from cloudock.core.domain.services.security import SecurityRuleReconciler
from cloudock.core.domain.services.smoke import SmokeTestRunner
from cloudock.core.domain.services.topology import expand, fan_out

__all__ = [
    "NodeLifecycleService",
    "SecurityRuleReconciler",
    "ContainerDeploymentService",
    "SmokeTestRunner",
    "ProgressTable",
    "ClusterConfigLoader",
    "load_config",
    "Deadline",
    "poll_until",
    "expand",
    "fan_out",
]
