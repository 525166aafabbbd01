"""Domain models for the cloudock orchestration engine."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

# Provider status values treated as "ready". OpenStack reports ACTIVE,
# normalized clients report RUNNING.
CONVERGED_STATUSES = frozenset({"RUNNING", "ACTIVE"})


class Direction(str, Enum):
    """Security rule direction."""

    INGRESS = "ingress"
    EGRESS = "egress"


class OutcomeStatus(str, Enum):
    """Terminal state of one entity within an orchestration run."""

    SUCCEEDED = "succeeded"
    TIMED_OUT = "timed_out"
    PROVIDER_ERROR = "provider_error"
    SKIPPED = "skipped"
    FAILED = "failed"
    ABORTED = "aborted"


# === Configuration models ===


class SmokeTestAuth(BaseModel):
    """Basic auth credentials for a smoke test request."""

    username: str
    password: str

    model_config = {"frozen": True}


class SmokeTest(BaseModel):
    """HTTP(S) GET check run against every node of a type."""

    name: str
    protocol: str = "http"
    port: int = 80
    path: str = "/"
    query: dict[str, Any] = Field(default_factory=dict)
    auth: Optional[SmokeTestAuth] = None
    should_start_with: Optional[str] = None
    should_contain: Optional[str] = None

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_protocol(self) -> "SmokeTest":
        if self.protocol not in ("http", "https"):
            raise ValueError(f"unsupported smoke test protocol: {self.protocol}")
        return self

    def url(self, host: str) -> str:
        """Build the request URL (without query string) for a host."""
        return f"{self.protocol}://{host}:{self.port}{self.path}"

    def passes(self, body: str) -> bool:
        """Check a response body against the pass criteria."""
        if self.should_start_with is not None and body.startswith(self.should_start_with):
            return True
        return self.should_contain is not None and self.should_contain in body


class NodeTypeSpec(BaseModel):
    """A declared class of cluster member."""

    name: str
    replication: int = Field(default=1, ge=0)
    image_ref: str
    flavor_ref: str
    security_groups: list[str] = Field(default_factory=list)
    images: list[str] = Field(default_factory=list)
    tests: list[SmokeTest] = Field(default_factory=list)

    model_config = {"frozen": True}


class NodeIdentity(BaseModel):
    """Concrete node derived from a NodeTypeSpec and a sequence number."""

    name: str
    type: str
    sequence: int
    spec: NodeTypeSpec

    model_config = {"frozen": True}


class RuleTemplate(BaseModel):
    """Security rule template: static CIDR, role addressed, or both."""

    direction: Direction = Direction.INGRESS
    ethertype: str = "IPv4"
    protocol: str = "tcp"
    port_range_min: int = Field(ge=0, le=65535)
    port_range_max: int = Field(ge=0, le=65535)
    remote_ip_prefix: Optional[str] = None
    remote_roles: list[str] = Field(default_factory=list)

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_ports(self) -> "RuleTemplate":
        if self.port_range_min > self.port_range_max:
            raise ValueError(
                f"port_range_min {self.port_range_min} > port_range_max {self.port_range_max}"
            )
        return self

    @property
    def is_addressable(self) -> bool:
        """Whether the template names any remote endpoint at all."""
        return bool(self.remote_ip_prefix) or bool(self.remote_roles)


class SecurityGroupSpec(BaseModel):
    """Declared security group with its rule templates."""

    description: str = ""
    rules: list[RuleTemplate] = Field(default_factory=list)

    model_config = {"frozen": True}


class ContainerCreateOptions(BaseModel):
    """
    Engine container-creation options.

    Known keys are typed; anything else is kept and passed through to the
    engine unchanged.
    """

    name: Optional[str] = None
    hostname: Optional[str] = Field(default=None, alias="Hostname")
    host_config: dict[str, Any] = Field(default_factory=dict, alias="HostConfig")
    host_aliases: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("HostAliases", "clouddity:HostAliases", "host_aliases"),
    )

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    @model_validator(mode="after")
    def _check_aliases(self) -> "ContainerCreateOptions":
        for alias in self.host_aliases:
            if alias.count(":") != 1:
                raise ValueError(f"host alias must be '<host>:<alias>', got {alias!r}")
        return self

    @property
    def is_host_network(self) -> bool:
        mode = self.host_config.get("NetworkMode") or ""
        return mode.lower() == "host"

    def to_engine(self) -> dict[str, Any]:
        """Engine-native body, without the client-side only keys."""
        body = self.model_dump(by_alias=True, exclude_none=True, exclude={"name", "host_aliases"})
        if not body.get("HostConfig"):
            body.pop("HostConfig", None)
        return body


class ContainerRunOptions(BaseModel):
    """Options used to create and start a container from an image."""

    cmd: Optional[list[str]] = None
    create: ContainerCreateOptions = Field(default_factory=ContainerCreateOptions)
    start: dict[str, Any] = Field(default_factory=dict)


class ContainerImageSpec(BaseModel):
    """Workload image declared in the image catalog."""

    name: str
    repo: str
    tag: str = "latest"
    # Build settings are accepted so existing catalogs load; images are only pulled.
    dockerfile: Optional[str] = None
    build: dict[str, Any] = Field(default_factory=dict)
    run: ContainerRunOptions = Field(default_factory=ContainerRunOptions)

    def reference(self, registry: Optional[str] = None) -> str:
        """Full image reference, prefixed by the registry when one is set."""
        base = f"{self.repo}:{self.tag}"
        return f"{registry}/{base}" if registry else base


class OpenStackSettings(BaseModel):
    """Compute and network provider credentials and server defaults."""

    auth_url: str
    username: str
    password: str
    project_name: str
    user_domain_name: str = "Default"
    project_domain_name: str = "Default"
    region: Optional[str] = None
    interface: str = "public"
    user_data: Optional[str] = None
    availability_zone: Optional[str] = None
    key_name: Optional[str] = None
    ssh_username: Optional[str] = None

    model_config = {"frozen": True}


class DockerSettings(BaseModel):
    """How to reach the container engine on each node."""

    protocol: str = "http"
    port: int = 2375
    registry: Optional[str] = None
    registry_auth: Optional[dict[str, str]] = None

    model_config = {"frozen": True}


class TimingSettings(BaseModel):
    """Poll cadence, convergence timeout and progress redraw tick, in seconds."""

    poll_interval: float = Field(default=3.0, gt=0)
    timeout: float = Field(default=240.0, gt=0)
    redraw_interval: float = Field(default=1.0, gt=0)

    model_config = {"frozen": True}


class ClusterConfig(BaseModel):
    """Static configuration, loaded once before any orchestration run."""

    cluster: str
    openstack: OpenStackSettings
    docker: DockerSettings = Field(default_factory=DockerSettings)
    timing: TimingSettings = Field(default_factory=TimingSettings)
    security_groups: dict[str, SecurityGroupSpec] = Field(default_factory=dict)
    node_types: list[NodeTypeSpec] = Field(default_factory=list)
    images: dict[str, ContainerImageSpec] = Field(default_factory=dict)

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_references(self) -> "ClusterConfig":
        if not self.cluster or "-" in self.cluster:
            raise ValueError(f"cluster name must be non-empty and contain no '-': {self.cluster!r}")
        seen: set[str] = set()
        for node_type in self.node_types:
            if node_type.name in seen:
                raise ValueError(f"duplicate node type: {node_type.name}")
            seen.add(node_type.name)
            for image_name in node_type.images:
                if image_name not in self.images:
                    raise ValueError(
                        f"node type {node_type.name} references undeclared image {image_name}"
                    )
            for group in node_type.security_groups:
                if group not in self.security_groups:
                    raise ValueError(
                        f"node type {node_type.name} references undeclared security group {group}"
                    )
        return self

    def node_type(self, name: str) -> Optional[NodeTypeSpec]:
        """Look up a node type by role name."""
        for node_type in self.node_types:
            if node_type.name == name:
                return node_type
        return None

    def images_for_role(self, role: str) -> list[ContainerImageSpec]:
        """Workload images assigned to a role, in declaration order."""
        node_type = self.node_type(role)
        if node_type is None:
            return []
        return [self.images[name] for name in node_type.images if name in self.images]


# === Runtime projections ===


class LiveNode(BaseModel):
    """Runtime projection of a provider-side instance."""

    id: str
    name: str
    ipv4: str = ""
    address: str = ""
    status: str = ""
    role: str = ""

    @property
    def short_id(self) -> str:
        return self.id[:5] + ".."

    @property
    def is_converged(self) -> bool:
        return self.status.upper() in CONVERGED_STATUSES


class SecurityGroup(BaseModel):
    """Provider-side security group."""

    id: str
    name: str
    description: str = ""


class ConcreteRule(BaseModel):
    """Fully resolved rule submitted to the network provider."""

    group_id: str
    direction: Direction
    ethertype: str
    protocol: str
    port_min: int
    port_max: int
    remote_cidr: str

    model_config = {"frozen": True}


class InstanceRequest(BaseModel):
    """Create-instance request sent to the compute provider."""

    name: str
    tenant: str
    image_ref: str
    flavor_ref: str
    security_groups: list[str] = Field(default_factory=list)
    user_data: Optional[str] = None
    availability_zone: Optional[str] = None
    key_name: Optional[str] = None


class EngineContainer(BaseModel):
    """Container as listed by a node's container engine."""

    id: str
    image: str
    status: str = ""
    names: list[str] = Field(default_factory=list)

    @property
    def short_id(self) -> str:
        return self.id[:12]


class EngineImage(BaseModel):
    """Image as listed by a node's container engine."""

    id: str
    repo_tags: list[str] = Field(default_factory=list)
    created: Optional[datetime] = None


class Selection(BaseModel):
    """Narrows a fan-out by role, node id, or container/image id."""

    role: Optional[str] = None
    node_id: Optional[str] = None
    entity_id: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not (self.role or self.node_id or self.entity_id)

    def matches(
        self,
        role: str,
        node_id: str,
        image_name: Optional[str],
        entity_id: Optional[str],
        role_images: Optional[list[str]] = None,
    ) -> bool:
        """
        Check whether an entity on a node is selected.

        A role match only selects images that the role declares as workloads.
        """
        if self.is_empty:
            return True
        if self.entity_id and entity_id and entity_id.startswith(self.entity_id):
            return True
        if self.node_id and node_id == self.node_id:
            return True
        if self.role and self.role == role:
            return image_name is not None and image_name in (role_images or [])
        return False


# === Outcomes ===


class EntityOutcome(BaseModel):
    """Terminal outcome for one entity."""

    entity: str
    status: OutcomeStatus
    detail: str = ""


class RunReport(BaseModel):
    """Aggregate outcome of one orchestration entry point."""

    operation: str
    outcomes: list[EntityOutcome] = Field(default_factory=list)
    rows: list[list[str]] = Field(default_factory=list)
    error: Optional[Exception] = None
    started_at: datetime = Field(default_factory=datetime.now)

    model_config = {"arbitrary_types_allowed": True}

    def record(self, entity: str, status: OutcomeStatus, detail: str = "") -> EntityOutcome:
        outcome = EntityOutcome(entity=entity, status=status, detail=detail)
        self.outcomes.append(outcome)
        return outcome

    def count(self, status: OutcomeStatus) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    @property
    def ok(self) -> bool:
        return self.error is None

    def summary(self) -> str:
        """One-line human readable summary."""
        parts = [f"{self.count(s)} {s.value}" for s in OutcomeStatus if self.count(s)]
        counts = ", ".join(parts) if parts else "nothing to do"
        return f"{self.operation}: {counts}"

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise self.error


# === Exceptions ===


class CloudockError(Exception):
    """Base exception for cloudock errors."""

    pass


class ConfigurationError(CloudockError):
    """Missing or invalid configuration."""

    pass


class ProviderError(CloudockError):
    """A compute, network, or container engine call failed."""

    def __init__(self, message: str, status_code: Optional[int] = None, result: Any = None):
        self.status_code = status_code
        self.result = result
        super().__init__(message)


class NotFoundError(ProviderError):
    """The provider reports the entity does not exist."""

    pass


class AlreadyInStateError(ProviderError):
    """The engine reports the entity is already in the requested state."""

    pass


class ConvergenceTimeoutError(CloudockError):
    """A poll loop ran out of time before reaching the expected state."""

    def __init__(self, entity: str, timeout: float, last_state: Optional[str] = None):
        self.entity = entity
        self.timeout = timeout
        self.last_state = last_state
        super().__init__(
            f"{entity} did not converge within {timeout:g}s (last state: {last_state or 'unknown'})"
        )


class OperatorAbortedError(CloudockError):
    """A destructive operation was declined at the confirmation gate."""

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"{operation} aborted by operator")


class SmokeTestError(CloudockError):
    """A smoke test did not pass."""

    def __init__(self, test_name: str, node_name: str, reason: str = ""):
        self.test_name = test_name
        self.node_name = node_name
        self.reason = reason
        super().__init__(f"Test {test_name} on {node_name} failed: {reason}")


def outcome_status(error: Exception) -> OutcomeStatus:
    """Map an error to the outcome reported for its entity."""
    if isinstance(error, ConvergenceTimeoutError):
        return OutcomeStatus.TIMED_OUT
    if isinstance(error, ProviderError):
        return OutcomeStatus.PROVIDER_ERROR
    if isinstance(error, OperatorAbortedError):
        return OutcomeStatus.ABORTED
    return OutcomeStatus.FAILED
