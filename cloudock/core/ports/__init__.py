"""Port interfaces for hexagonal architecture."""

from cloudock.core.ports.outbound.compute import IComputePort
from cloudock.core.ports.outbound.container_engine import IContainerEnginePort
from cloudock.core.ports.outbound.network import INetworkPort

__all__ = [
    "IComputePort",
    "INetworkPort",
    "IContainerEnginePort",
]
