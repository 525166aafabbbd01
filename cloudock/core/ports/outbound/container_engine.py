"""Container engine outbound port interface."""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import Any, Callable, Optional

from cloudock.core.domain.models import EngineContainer, EngineImage, LiveNode


class IContainerEnginePort(ABC):
    """
    Outbound port for the container engine running on one node.

    Option dictionaries are engine-native and passed through unmodified.
    """

    @abstractmethod
    def pull_image(
        self,
        reference: str,
        auth: Optional[dict[str, str]] = None,
    ) -> AsyncIterator[str]:
        """
        Pull an image, yielding raw progress payloads as they arrive.

        Raises:
            ProviderError: If the stream cannot be opened or breaks
        """
        pass

    @abstractmethod
    async def list_images(self) -> list[EngineImage]:
        """List images present on the node."""
        pass

    @abstractmethod
    async def remove_image(self, image_id: str) -> None:
        """Remove an image."""
        pass

    @abstractmethod
    async def list_containers(self, all: bool = True) -> list[EngineContainer]:
        """List containers, including stopped ones when all is set."""
        pass

    @abstractmethod
    async def create_container(
        self,
        options: dict[str, Any],
        name: Optional[str] = None,
    ) -> str:
        """
        Create a container.

        Returns:
            Engine id of the container
        """
        pass

    @abstractmethod
    async def start_container(
        self,
        container_id: str,
        options: Optional[dict[str, Any]] = None,
    ) -> None:
        """
        Start a container.

        Raises:
            AlreadyInStateError: If it is already running
        """
        pass

    @abstractmethod
    async def stop_container(self, container_id: str) -> None:
        """
        Stop a container.

        Raises:
            AlreadyInStateError: If it is already stopped
        """
        pass

    @abstractmethod
    async def remove_container(self, container_id: str) -> None:
        """Remove a container."""
        pass

    async def close(self) -> None:
        """Release client resources."""
        pass


# Builds the engine client addressed by a node's network address
EngineFactory = Callable[[LiveNode], IContainerEnginePort]
