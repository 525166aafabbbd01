"""OpenStack compute (Nova) and network (Neutron) adapters over aiohttp."""

import base64
from typing import Any, Optional

import aiohttp
import structlog

from cloudock.core.domain.models import (
    ConcreteRule,
    InstanceRequest,
    LiveNode,
    NotFoundError,
    OpenStackSettings,
    ProviderError,
    SecurityGroup,
)
from cloudock.core.ports.outbound.compute import IComputePort
from cloudock.core.ports.outbound.network import INetworkPort

logger = structlog.get_logger(__name__)

# Nova filters on its own status names
_NOVA_STATUS = {"RUNNING": "ACTIVE"}


class OpenStackSession:
    """
    Authenticated HTTP session against an OpenStack cloud.

    Authenticates lazily with Keystone v3 password credentials, keeps the
    token, and resolves service endpoints from the returned catalog.

    Usage:
        session = OpenStackSession(config.openstack)
        compute = NovaComputeAdapter(session)
        network = NeutronNetworkAdapter(session)
        ...
        await session.close()
    """

    def __init__(
        self,
        settings: OpenStackSettings,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 60.0,
    ):
        """
        Initialize OpenStack session.

        Args:
            settings: Credentials and endpoint selection
            session: Existing client session, created on first use when None
            timeout: Total timeout of one request in seconds
        """
        self._settings = settings
        self._session = session
        self._owns_session = session is None
        self._timeout = timeout
        self._token: Optional[str] = None
        self._catalog: list[dict[str, Any]] = []

    def _client(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            )
        return self._session

    def _auth_body(self) -> dict[str, Any]:
        s = self._settings
        return {
            "auth": {
                "identity": {
                    "methods": ["password"],
                    "password": {
                        "user": {
                            "name": s.username,
                            "domain": {"name": s.user_domain_name},
                            "password": s.password,
                        }
                    },
                },
                "scope": {
                    "project": {
                        "name": s.project_name,
                        "domain": {"name": s.project_domain_name},
                    }
                },
            }
        }

    async def authenticate(self) -> None:
        """Request a scoped token and the service catalog."""
        url = self._settings.auth_url.rstrip("/")
        if not url.endswith("/v3"):
            url = f"{url}/v3"

        async with self._client().post(f"{url}/auth/tokens", json=self._auth_body()) as response:
            if response.status >= 400:
                text = await response.text()
                raise ProviderError(
                    f"Keystone authentication failed: {response.status} {text[:200]}",
                    status_code=response.status,
                )
            self._token = response.headers.get("X-Subject-Token")
            body = await response.json()

        self._catalog = body.get("token", {}).get("catalog", [])
        logger.debug("openstack_authenticated", services=len(self._catalog))

    def endpoint(self, service_type: str) -> str:
        """
        Public URL of a service from the catalog.

        Raises:
            ProviderError: If the catalog has no matching endpoint
        """
        region = self._settings.region
        for service in self._catalog:
            if service.get("type") != service_type:
                continue
            for ep in service.get("endpoints", []):
                if ep.get("interface") != self._settings.interface:
                    continue
                if region and ep.get("region") not in (None, region) and ep.get("region_id") != region:
                    continue
                return ep["url"].rstrip("/")
        raise ProviderError(f"No {self._settings.interface} endpoint for service {service_type}")

    async def request(
        self,
        service_type: str,
        method: str,
        path: str,
        **kwargs: Any,
    ) -> Any:
        """
        Call a service API and decode its JSON answer.

        Returns:
            Decoded body, or None for empty responses

        Raises:
            NotFoundError: On 404
            ProviderError: On any other error status
        """
        if self._token is None:
            await self.authenticate()

        base = self.endpoint(service_type)
        if service_type == "network" and not base.endswith("/v2.0"):
            base = f"{base}/v2.0"
        headers = {"X-Auth-Token": self._token or "", "Accept": "application/json"}

        async with self._client().request(method, f"{base}{path}", headers=headers, **kwargs) as response:
            if response.status == 404:
                raise NotFoundError(f"{method} {path}: not found", status_code=404)
            if response.status >= 400:
                text = await response.text()
                raise ProviderError(
                    f"{method} {path} failed: {response.status} {text[:200]}",
                    status_code=response.status,
                    result=text,
                )
            if response.status == 204:
                return None
            text = await response.text()
            if not text:
                return None
            return await response.json(content_type=None)

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None


def project_server(server: dict[str, Any]) -> LiveNode:
    """Map a Nova server document to a LiveNode."""
    ipv4 = ""
    address = ""
    for network, entries in (server.get("addresses") or {}).items():
        for entry in entries:
            if entry.get("version", 4) == 4 and entry.get("addr"):
                ipv4 = entry["addr"]
                address = f"{network}: {ipv4}"
                break
        if ipv4:
            break
    return LiveNode(
        id=server["id"],
        name=server.get("name", ""),
        ipv4=ipv4,
        address=address,
        status=(server.get("status") or "").upper(),
    )


class NovaComputeAdapter(IComputePort):
    """Compute port backed by the Nova API."""

    def __init__(self, session: OpenStackSession):
        self._session = session

    async def create_instance(self, request: InstanceRequest) -> str:
        server: dict[str, Any] = {
            "name": request.name,
            "imageRef": request.image_ref,
            "flavorRef": request.flavor_ref,
            "security_groups": [{"name": group} for group in request.security_groups],
        }
        if request.user_data:
            server["user_data"] = base64.b64encode(request.user_data.encode()).decode()
        if request.availability_zone:
            server["availability_zone"] = request.availability_zone
        if request.key_name:
            server["key_name"] = request.key_name

        body = await self._session.request("compute", "POST", "/servers", json={"server": server})
        instance_id = body["server"]["id"]
        logger.debug("nova_server_requested", name=request.name, instance_id=instance_id)
        return instance_id

    async def get_instance(self, instance_id: str) -> LiveNode:
        body = await self._session.request("compute", "GET", f"/servers/{instance_id}")
        return project_server(body["server"])

    async def list_instances(self, name_prefix: str, status: Optional[str] = None) -> list[LiveNode]:
        params = {"name": f"^{name_prefix}"}
        if status:
            params["status"] = _NOVA_STATUS.get(status.upper(), status.upper())
        body = await self._session.request("compute", "GET", "/servers/detail", params=params)
        return [project_server(server) for server in body.get("servers", [])]

    async def destroy_instance(self, instance_id: str) -> None:
        await self._session.request("compute", "DELETE", f"/servers/{instance_id}")

    async def close(self) -> None:
        await self._session.close()


class NeutronNetworkAdapter(INetworkPort):
    """Network port backed by the Neutron API."""

    def __init__(self, session: OpenStackSession):
        self._session = session

    async def create_group(self, name: str, description: str) -> str:
        body = await self._session.request(
            "network",
            "POST",
            "/security-groups",
            json={"security_group": {"name": name, "description": description}},
        )
        return body["security_group"]["id"]

    async def destroy_group(self, group_id: str) -> None:
        await self._session.request("network", "DELETE", f"/security-groups/{group_id}")

    async def list_groups(self) -> list[SecurityGroup]:
        body = await self._session.request("network", "GET", "/security-groups")
        return [
            SecurityGroup(id=g["id"], name=g.get("name", ""), description=g.get("description") or "")
            for g in body.get("security_groups", [])
        ]

    async def create_rule(self, rule: ConcreteRule) -> str:
        body = await self._session.request(
            "network",
            "POST",
            "/security-group-rules",
            json={
                "security_group_rule": {
                    "security_group_id": rule.group_id,
                    "direction": rule.direction.value,
                    "ethertype": rule.ethertype,
                    "protocol": rule.protocol,
                    "port_range_min": rule.port_min,
                    "port_range_max": rule.port_max,
                    "remote_ip_prefix": rule.remote_cidr,
                }
            },
        )
        return body["security_group_rule"]["id"]

    async def close(self) -> None:
        await self._session.close()
