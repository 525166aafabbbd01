"""Remote shell outbound port interface."""

from abc import ABC, abstractmethod


class IRemoteShellPort(ABC):
    """Runs a shell command on a cluster node."""

    @abstractmethod
    async def run(self, host: str, username: str, command: str) -> str:
        """
        Run a command and return its standard output.

        Raises:
            ProviderError: If the command exits non-zero
        """
        pass
