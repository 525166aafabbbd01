"""Network/security provider outbound port interface."""

from abc import ABC, abstractmethod

from cloudock.core.domain.models import ConcreteRule, SecurityGroup


class INetworkPort(ABC):
    """Outbound port for security groups and their rules."""

    @abstractmethod
    async def create_group(self, name: str, description: str) -> str:
        """
        Create a security group.

        Returns:
            Provider id of the group
        """
        pass

    @abstractmethod
    async def destroy_group(self, group_id: str) -> None:
        """Delete a security group."""
        pass

    @abstractmethod
    async def list_groups(self) -> list[SecurityGroup]:
        """List every security group visible to the tenant."""
        pass

    @abstractmethod
    async def create_rule(self, rule: ConcreteRule) -> str:
        """
        Add a rule to a security group.

        Returns:
            Provider id of the rule
        """
        pass

    async def close(self) -> None:
        """Release client resources."""
        pass
