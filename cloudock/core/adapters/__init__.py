"""Adapters - concrete implementations of ports."""

from cloudock.core.adapters.docker_adapter import DockerEngineAdapter, docker_engine_factory
from cloudock.core.adapters.http_probe_adapter import AiohttpProbeAdapter
from cloudock.core.adapters.openstack_adapter import (
    NeutronNetworkAdapter,
    NovaComputeAdapter,
    OpenStackSession,
)
from cloudock.core.adapters.rich_progress import RichLiveProgressSink
from cloudock.core.adapters.ssh_adapter import SshRemoteShellAdapter

__all__ = [
    # OpenStack
    "OpenStackSession",
    "NovaComputeAdapter",
    "NeutronNetworkAdapter",
    # Docker
    "DockerEngineAdapter",
    "docker_engine_factory",
    # Smoke tests and hosts files
    "AiohttpProbeAdapter",
    "SshRemoteShellAdapter",
    # Progress
    "RichLiveProgressSink",
]
