"""aiohttp implementation of the smoke test HTTP probe."""

from typing import Any, Optional

import aiohttp
import structlog

from cloudock.core.domain.models import ProviderError
from cloudock.core.ports.outbound.http_probe import IHttpProbePort

logger = structlog.get_logger(__name__)


class AiohttpProbeAdapter(IHttpProbePort):
    """Plain GET client; certificate checks are off for node-local endpoints."""

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 30.0,
    ):
        self._session = session
        self._owns_session = session is None
        self._timeout = timeout

    def _client(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            )
        return self._session

    async def get(
        self,
        url: str,
        params: Optional[dict[str, Any]] = None,
        auth: Optional[tuple[str, str]] = None,
    ) -> str:
        basic = aiohttp.BasicAuth(*auth) if auth else None
        query = {k: str(v) for k, v in params.items()} if params else None
        try:
            async with self._client().get(url, params=query, auth=basic, ssl=False) as response:
                body = await response.text()
                logger.debug("probe_response", url=url, status=response.status, size=len(body))
                return body
        except aiohttp.ClientError as e:
            raise ProviderError(f"GET {url} failed: {e}") from e

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None
