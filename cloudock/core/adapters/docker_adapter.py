"""Docker Engine HTTP API adapter over aiohttp."""

import base64
import json
from collections.abc import AsyncIterator
from datetime import datetime, timezone
from typing import Any, Optional

import aiohttp
import structlog

from cloudock.core.domain.models import (
    AlreadyInStateError,
    DockerSettings,
    EngineContainer,
    EngineImage,
    LiveNode,
    NotFoundError,
    ProviderError,
)
from cloudock.core.ports.outbound.container_engine import EngineFactory, IContainerEnginePort

logger = structlog.get_logger(__name__)


def split_reference(reference: str) -> tuple[str, str]:
    """Split ``[registry/]repo[:tag]`` into repository and tag."""
    repo, sep, tag = reference.rpartition(":")
    if not sep or "/" in tag:
        return reference, "latest"
    return repo, tag


def encode_auth(auth: dict[str, str]) -> str:
    """Registry credentials as the engine's X-Registry-Auth header value."""
    return base64.urlsafe_b64encode(json.dumps(auth).encode()).decode()


class DockerEngineAdapter(IContainerEnginePort):
    """
    Container engine port speaking the Docker remote API of one node.

    Option dictionaries are sent as the request body unchanged.
    """

    def __init__(
        self,
        host: str,
        port: int = 2375,
        protocol: str = "http",
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 300.0,
    ):
        """
        Initialize Docker engine adapter.

        Args:
            host: Node address
            port: Engine API port
            protocol: http or https
            session: Existing client session, created on first use when None
            timeout: Total timeout of one request in seconds
        """
        self._base_url = f"{protocol}://{host}:{port}"
        self._session = session
        self._owns_session = session is None
        self._timeout = timeout

    @property
    def base_url(self) -> str:
        return self._base_url

    def _client(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            )
        return self._session

    async def _check(self, response: Any, what: str) -> None:
        if response.status < 300:
            return
        message = ""
        try:
            body = await response.json(content_type=None)
            if isinstance(body, dict):
                message = body.get("message", "")
        except ValueError:
            message = await response.text()
        if response.status == 304:
            raise AlreadyInStateError(f"{what}: already in requested state", status_code=304)
        if response.status == 404:
            raise NotFoundError(f"{what}: {message or 'not found'}", status_code=404)
        raise ProviderError(
            f"{what} failed: {response.status} {message}".rstrip(),
            status_code=response.status,
            result=message,
        )

    async def _call(
        self,
        method: str,
        path: str,
        what: str,
        **kwargs: Any,
    ) -> Any:
        async with self._client().request(method, f"{self._base_url}{path}", **kwargs) as response:
            await self._check(response, what)
            if response.status in (204, 304):
                return None
            text = await response.text()
            return json.loads(text) if text else None

    # === Images ===

    async def pull_image(
        self,
        reference: str,
        auth: Optional[dict[str, str]] = None,
    ) -> AsyncIterator[str]:
        repo, tag = split_reference(reference)
        headers = {"X-Registry-Auth": encode_auth(auth)} if auth else {}
        params = {"fromImage": repo, "tag": tag}

        async with self._client().post(
            f"{self._base_url}/images/create", params=params, headers=headers
        ) as response:
            await self._check(response, f"pull {reference}")
            async for chunk in response.content.iter_any():
                yield chunk.decode("utf-8", errors="replace")

    async def list_images(self) -> list[EngineImage]:
        body = await self._call("GET", "/images/json", "list images") or []
        return [
            EngineImage(
                id=item["Id"],
                repo_tags=[t for t in (item.get("RepoTags") or []) if t != "<none>:<none>"],
                created=datetime.fromtimestamp(item["Created"], tz=timezone.utc) if item.get("Created") else None,
            )
            for item in body
        ]

    async def remove_image(self, image_id: str) -> None:
        await self._call("DELETE", f"/images/{image_id}", f"remove image {image_id}")

    # === Containers ===

    async def list_containers(self, all: bool = True) -> list[EngineContainer]:
        params = {"all": "1" if all else "0"}
        body = await self._call("GET", "/containers/json", "list containers", params=params) or []
        return [
            EngineContainer(
                id=item["Id"],
                image=item.get("Image", ""),
                status=item.get("Status", ""),
                names=[n.lstrip("/") for n in item.get("Names") or []],
            )
            for item in body
        ]

    async def create_container(
        self,
        options: dict[str, Any],
        name: Optional[str] = None,
    ) -> str:
        params = {"name": name} if name else None
        body = await self._call(
            "POST", "/containers/create", "create container", params=params, json=options
        )
        for warning in body.get("Warnings") or []:
            logger.warning("docker_create_warning", name=name, warning=warning)
        return body["Id"]

    async def start_container(
        self,
        container_id: str,
        options: Optional[dict[str, Any]] = None,
    ) -> None:
        kwargs: dict[str, Any] = {"json": options} if options else {}
        await self._call(
            "POST", f"/containers/{container_id}/start", f"start {container_id}", **kwargs
        )

    async def stop_container(self, container_id: str) -> None:
        await self._call("POST", f"/containers/{container_id}/stop", f"stop {container_id}")

    async def remove_container(self, container_id: str) -> None:
        await self._call("DELETE", f"/containers/{container_id}", f"remove {container_id}")

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None


def docker_engine_factory(
    settings: DockerSettings,
    session: Optional[aiohttp.ClientSession] = None,
) -> EngineFactory:
    """Build engine clients addressed by each node's IPv4 address."""

    def factory(node: LiveNode) -> IContainerEnginePort:
        return DockerEngineAdapter(
            node.ipv4,
            port=settings.port,
            protocol=settings.protocol,
            session=session,
        )

    return factory
