"""Compute provider outbound port interface."""

from abc import ABC, abstractmethod
from typing import Optional

from cloudock.core.domain.models import InstanceRequest, LiveNode


class IComputePort(ABC):
    """
    Outbound port for the compute provider.

    Implementations project provider-side instances into LiveNode objects.
    Status values are returned upper-cased.
    """

    @abstractmethod
    async def create_instance(self, request: InstanceRequest) -> str:
        """
        Submit an instance for creation.

        Args:
            request: Instance definition

        Returns:
            Provider id of the new instance

        Raises:
            ProviderError: If the provider rejects the request
        """
        pass

    @abstractmethod
    async def get_instance(self, instance_id: str) -> LiveNode:
        """
        Fetch one instance.

        Raises:
            NotFoundError: If the instance does not exist
            ProviderError: On any other provider failure
        """
        pass

    @abstractmethod
    async def list_instances(
        self,
        name_prefix: str,
        status: Optional[str] = None,
    ) -> list[LiveNode]:
        """
        List instances whose name starts with a prefix.

        Args:
            name_prefix: Name prefix to match
            status: Provider status to match, None for any
        """
        pass

    @abstractmethod
    async def destroy_instance(self, instance_id: str) -> None:
        """Request deletion of an instance."""
        pass

    async def close(self) -> None:
        """Release client resources."""
        pass
