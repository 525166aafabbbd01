"""HTTP probe outbound port interface."""

from abc import ABC, abstractmethod
from typing import Any, Optional


class IHttpProbePort(ABC):
    """Performs plain GET requests for smoke tests."""

    @abstractmethod
    async def get(
        self,
        url: str,
        params: Optional[dict[str, Any]] = None,
        auth: Optional[tuple[str, str]] = None,
    ) -> str:
        """
        GET a URL and return the response body.

        Raises:
            ProviderError: If the request cannot complete
        """
        pass

    async def close(self) -> None:
        """Release client resources."""
        pass
