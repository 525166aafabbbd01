"""Outbound ports - interfaces for external system connections."""

from cloudock.core.ports.outbound.compute import IComputePort
from cloudock.core.ports.outbound.container_engine import EngineFactory, IContainerEnginePort
from cloudock.core.ports.outbound.http_probe import IHttpProbePort
from cloudock.core.ports.outbound.network import INetworkPort
from cloudock.core.ports.outbound.progress import IProgressSink, NullProgressSink
from cloudock.core.ports.outbound.remote_shell import IRemoteShellPort

__all__ = [
    # Providers
    "IComputePort",
    "INetworkPort",
    # Containers
    "IContainerEnginePort",
    "EngineFactory",
    # Smoke tests and hosts files
    "IHttpProbePort",
    "IRemoteShellPort",
    # Progress
    "IProgressSink",
    "NullProgressSink",
]
