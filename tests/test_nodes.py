from typing import Optional

import pytest

from cloudock.core.domain.models import (
    ClusterConfig,
    ConfigurationError,
    ConvergenceTimeoutError,
    InstanceRequest,
    LiveNode,
    NotFoundError,
    OperatorAbortedError,
    OutcomeStatus,
    ProviderError,
)
from cloudock.core.domain.services.nodes import (
    NodeLifecycleService,
    hosts_command,
    node_row,
    status_matches,
)
from cloudock.core.ports.outbound.compute import IComputePort
from cloudock.core.ports.outbound.progress import IProgressSink
from cloudock.core.ports.outbound.remote_shell import IRemoteShellPort


def _config(timeout: float = 5.0, ssh_username: Optional[str] = None, web: int = 2) -> ClusterConfig:
    return ClusterConfig.model_validate(
        {
            "cluster": "oa",
            "openstack": {
                "auth_url": "https://keystone.example:5000/v3",
                "username": "u",
                "password": "p",
                "project_name": "proj",
                "ssh_username": ssh_username,
            },
            "timing": {"poll_interval": 0.001, "timeout": timeout, "redraw_interval": 0.001},
            "security_groups": {"http": {"description": "web"}},
            "node_types": [
                {
                    "name": "web",
                    "replication": web,
                    "image_ref": "ubuntu",
                    "flavor_ref": "m1.small",
                    "security_groups": ["http"],
                }
            ],
        }
    )


class _FakeCompute(IComputePort):
    def __init__(self, statuses: Optional[list[str]] = None) -> None:
        self.statuses = statuses or ["RUNNING"]
        self.requests: list[InstanceRequest] = []
        self.instances: dict[str, LiveNode] = {}
        self.samples: dict[str, int] = {}
        self.destroyed: list[str] = []
        self.fail_create: set[str] = set()

    async def create_instance(self, request: InstanceRequest) -> str:
        if request.name in self.fail_create:
            raise ProviderError("quota exceeded", status_code=413)
        self.requests.append(request)
        instance_id = f"id-{request.name}"
        self.instances[instance_id] = LiveNode(id=instance_id, name=request.name, ipv4="10.0.0.1")
        return instance_id

    async def get_instance(self, instance_id: str) -> LiveNode:
        if instance_id not in self.instances:
            raise NotFoundError(instance_id, status_code=404)
        count = self.samples.get(instance_id, 0)
        self.samples[instance_id] = count + 1
        status = self.statuses[min(count, len(self.statuses) - 1)]
        return self.instances[instance_id].model_copy(update={"status": status.lower()})

    async def list_instances(self, name_prefix: str, status: Optional[str] = None) -> list[LiveNode]:
        return list(self.instances.values())

    async def destroy_instance(self, instance_id: str) -> None:
        self.destroyed.append(instance_id)
        del self.instances[instance_id]


class _RecordingSink(IProgressSink):
    def __init__(self) -> None:
        self.frames: list[list[list[str]]] = []
        self.finished = False

    def update(self, title: str, headers: list[str], rows: list[list[str]]) -> None:
        self.frames.append(rows)

    def done(self) -> None:
        self.finished = True


class _FakeShell(IRemoteShellPort):
    def __init__(self) -> None:
        self.calls: list[tuple[str, str, str]] = []

    async def run(self, host: str, username: str, command: str) -> str:
        self.calls.append((host, username, command))
        return ""


def test_status_matches_treats_running_and_active_alike() -> None:
    assert status_matches("ACTIVE", "RUNNING")
    assert status_matches("running", "ACTIVE")
    assert status_matches("BUILD", None)
    assert not status_matches("BUILD", "ACTIVE")


def test_node_row_shortens_id() -> None:
    node = LiveNode(id="abcdef123", name="oa-web-1", address="net: 10.0.0.1", status="running")
    assert node_row(node) == ["abcde..", "oa-web-1", "net: 10.0.0.1", "RUNNING"]


def test_hosts_command_quotes_entries() -> None:
    command = hosts_command(["10.0.0.1 oa-web-1", "10.0.0.2 oa-web-2"])
    assert "'10.0.0.1 oa-web-1' '10.0.0.2 oa-web-2'" in command
    assert command.endswith("sudo mv /tmp/hosts.cloudock /etc/hosts")


@pytest.mark.asyncio
async def test_create_polls_until_running() -> None:
    compute = _FakeCompute(["BUILD", "BUILD", "RUNNING"])
    sink = _RecordingSink()
    service = NodeLifecycleService(_config(web=1), compute, sink_factory=lambda: sink)

    report = await service.create()

    assert report.ok
    assert report.count(OutcomeStatus.SUCCEEDED) == 1
    assert compute.samples == {"id-oa-web-1": 3}
    assert compute.requests[0].security_groups == ["oa-http"]
    assert compute.requests[0].tenant == "proj"
    assert sink.finished
    assert sink.frames[-1] == [["id-oa..", "oa-web-1", "", "RUNNING"]]


@pytest.mark.asyncio
async def test_create_every_declared_node() -> None:
    compute = _FakeCompute()
    service = NodeLifecycleService(_config(web=2), compute)

    report = await service.create()

    assert report.ok
    assert sorted(r.name for r in compute.requests) == ["oa-web-1", "oa-web-2"]
    assert report.count(OutcomeStatus.SUCCEEDED) == 2


@pytest.mark.asyncio
async def test_create_with_empty_catalog_creates_nothing() -> None:
    compute = _FakeCompute()
    service = NodeLifecycleService(_config(web=2), compute)

    report = await service.create([])

    assert report.ok
    assert compute.requests == []
    assert report.outcomes == []


@pytest.mark.asyncio
async def test_create_times_out_without_rollback() -> None:
    compute = _FakeCompute(["BUILD"])
    service = NodeLifecycleService(_config(timeout=0.02, web=1), compute)

    report = await service.create()

    assert isinstance(report.error, ConvergenceTimeoutError)
    assert report.count(OutcomeStatus.TIMED_OUT) == 1
    assert compute.destroyed == []


@pytest.mark.asyncio
async def test_create_failure_does_not_stop_siblings() -> None:
    compute = _FakeCompute()
    compute.fail_create.add("oa-web-1")
    service = NodeLifecycleService(_config(web=2), compute)

    report = await service.create()

    assert isinstance(report.error, ProviderError)
    assert report.count(OutcomeStatus.PROVIDER_ERROR) == 1
    assert report.count(OutcomeStatus.SUCCEEDED) == 1


@pytest.mark.asyncio
async def test_list_nodes_projects_roles_and_status() -> None:
    compute = _FakeCompute()
    compute.instances["x"] = LiveNode(id="x", name="oa-web-1", status="active")
    compute.instances["y"] = LiveNode(id="y", name="other-web-1", status="active")
    service = NodeLifecycleService(_config(), compute)

    nodes = await service.list_nodes()

    assert [(n.name, n.role, n.status) for n in nodes] == [("oa-web-1", "web", "ACTIVE")]
    assert [n.name for n in await service.active()] == ["oa-web-1"]


@pytest.mark.asyncio
async def test_destroy_declined_makes_no_calls() -> None:
    compute = _FakeCompute()
    compute.instances["x"] = LiveNode(id="x", name="oa-web-1", status="ACTIVE")
    prompts: list[str] = []
    service = NodeLifecycleService(_config(), compute)

    report = await service.destroy(lambda message: prompts.append(message) or False)

    assert isinstance(report.error, OperatorAbortedError)
    assert report.count(OutcomeStatus.ABORTED) == 1
    assert compute.destroyed == []
    assert len(prompts) == 1


@pytest.mark.asyncio
async def test_destroy_waits_until_instance_is_gone() -> None:
    compute = _FakeCompute()
    compute.instances["x"] = LiveNode(id="x", name="oa-web-1", status="ACTIVE")
    compute.instances["y"] = LiveNode(id="y", name="oa-web-2", status="ACTIVE")
    service = NodeLifecycleService(_config(), compute)

    report = await service.destroy(lambda message: True)

    assert report.ok
    assert sorted(compute.destroyed) == ["x", "y"]
    assert report.count(OutcomeStatus.SUCCEEDED) == 2


@pytest.mark.asyncio
async def test_update_hosts_requires_ssh_user() -> None:
    service = NodeLifecycleService(_config(), _FakeCompute(), shell=_FakeShell())

    with pytest.raises(ConfigurationError):
        await service.update_hosts()


@pytest.mark.asyncio
async def test_update_hosts_runs_on_every_active_node() -> None:
    compute = _FakeCompute()
    compute.instances["x"] = LiveNode(id="x", name="oa-web-1", ipv4="10.0.0.1", status="ACTIVE")
    compute.instances["y"] = LiveNode(id="y", name="oa-web-2", ipv4="10.0.0.2", status="BUILD")
    shell = _FakeShell()
    service = NodeLifecycleService(_config(ssh_username="ubuntu"), compute, shell=shell)

    report = await service.update_hosts()

    assert report.ok
    assert [(host, user) for host, user, _ in shell.calls] == [("10.0.0.1", "ubuntu")]
    command = shell.calls[0][2]
    assert "10.0.0.1 oa-web-1" in command
    assert "10.0.0.2 oa-web-2" in command
