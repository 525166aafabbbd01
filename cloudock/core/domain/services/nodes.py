"""Node lifecycle domain service."""

import shlex
from typing import Callable, Optional

import structlog

from cloudock.core.domain.models import (
    CONVERGED_STATUSES,
    ClusterConfig,
    ConfigurationError,
    InstanceRequest,
    LiveNode,
    NodeIdentity,
    NodeTypeSpec,
    NotFoundError,
    OperatorAbortedError,
    OutcomeStatus,
    RunReport,
    outcome_status,
)
from cloudock.core.domain.services.polling import poll_until
from cloudock.core.domain.services.progress import ProgressTable
from cloudock.core.domain.services.topology import expand, fan_out, group_name, node_role
from cloudock.core.ports.outbound.compute import IComputePort
from cloudock.core.ports.outbound.progress import IProgressSink
from cloudock.core.ports.outbound.remote_shell import IRemoteShellPort

logger = structlog.get_logger(__name__)

NODE_HEADERS = ["Id", "Name", "Zone:Ipv4", "Status"]

Confirm = Callable[[str], bool]
SinkFactory = Callable[[], IProgressSink]


def node_row(node: LiveNode) -> list[str]:
    """Display fields of a node."""
    return [node.short_id, node.name, node.address, node.status.upper()]


def status_matches(actual: str, wanted: Optional[str]) -> bool:
    """Compare provider statuses, treating every converged spelling as equal."""
    if not wanted:
        return True
    actual, wanted = actual.upper(), wanted.upper()
    if actual == wanted:
        return True
    return actual in CONVERGED_STATUSES and wanted in CONVERGED_STATUSES


def hosts_command(entries: list[str]) -> str:
    """Shell command prepending entries to /etc/hosts."""
    lines = " ".join(shlex.quote(entry) for entry in entries)
    return (
        f"printf '%s\\n' {lines} | cat - /etc/hosts > /tmp/hosts.cloudock"
        " && sudo mv /tmp/hosts.cloudock /etc/hosts"
    )


class NodeLifecycleService:
    """
    Creates, lists, and destroys the cluster's compute instances.

    Creation submits every node concurrently and polls each one until the
    provider reports it converged or the timeout elapses. Timed out instances
    are left in place. Destruction works on the live roster, not on the
    declared catalog, and waits until the provider no longer knows the node.

    Usage:
        nodes = NodeLifecycleService(config, compute)
        report = await nodes.create()
        print(report.summary())
    """

    def __init__(
        self,
        config: ClusterConfig,
        compute: IComputePort,
        sink_factory: Optional[SinkFactory] = None,
        shell: Optional[IRemoteShellPort] = None,
    ):
        """
        Initialize node lifecycle service.

        Args:
            config: Cluster configuration
            compute: Compute provider port
            sink_factory: Builds a progress sink for each live run
            shell: Remote shell used to update hosts files
        """
        self._config = config
        self._compute = compute
        self._sink_factory = sink_factory
        self._shell = shell

    @property
    def prefix(self) -> str:
        return f"{self._config.cluster}-"

    def _sink(self) -> Optional[IProgressSink]:
        return self._sink_factory() if self._sink_factory else None

    def _project(self, node: LiveNode) -> LiveNode:
        return node.model_copy(
            update={
                "status": node.status.upper(),
                "role": node_role(self._config.cluster, node.name),
            }
        )

    def instance_request(self, identity: NodeIdentity) -> InstanceRequest:
        """Build the create-instance request for a node."""
        settings = self._config.openstack
        return InstanceRequest(
            name=identity.name,
            tenant=settings.project_name,
            image_ref=identity.spec.image_ref,
            flavor_ref=identity.spec.flavor_ref,
            security_groups=[
                group_name(self._config.cluster, group) for group in identity.spec.security_groups
            ],
            user_data=settings.user_data,
            availability_zone=settings.availability_zone,
            key_name=settings.key_name,
        )

    # === Create ===

    async def create(self, node_types: Optional[list[NodeTypeSpec]] = None) -> RunReport:
        """
        Create every declared node and wait for convergence.

        Args:
            node_types: Catalog to expand, defaults to the configured one

        Returns:
            Report with one outcome per node
        """
        catalog = node_types if node_types is not None else self._config.node_types
        identities = expand(self._config.cluster, catalog)
        timing = self._config.timing
        report = RunReport(operation="node create")
        table = ProgressTable("Nodes", NODE_HEADERS, self._sink())

        logger.info("node_create_started", cluster=self._config.cluster, count=len(identities))

        async def create_one(identity: NodeIdentity) -> None:
            try:
                instance_id = await self._compute.create_instance(self.instance_request(identity))
                logger.debug("node_submitted", node=identity.name, instance_id=instance_id)

                async def sample() -> LiveNode:
                    node = self._project(await self._compute.get_instance(instance_id))
                    table.set(node.short_id, node_row(node))
                    return node

                await poll_until(
                    identity.name,
                    sample,
                    lambda node: node.is_converged,
                    interval=timing.poll_interval,
                    timeout=timing.timeout,
                    describe=lambda node: node.status,
                )
            except Exception as e:
                logger.error("node_create_failed", node=identity.name, error=str(e))
                report.record(identity.name, outcome_status(e), str(e))
                raise

            logger.info("node_converged", node=identity.name, instance_id=instance_id)
            report.record(identity.name, OutcomeStatus.SUCCEEDED, instance_id)

        async with table.live(timing.redraw_interval):
            report.error = await fan_out(identities, create_one)

        logger.info("node_create_finished", summary=report.summary())
        return report

    # === List ===

    async def list_nodes(self, status: Optional[str] = None) -> list[LiveNode]:
        """
        List the cluster's live nodes.

        Args:
            status: Provider status to match, None or empty for any
        """
        nodes = await self._compute.list_instances(self.prefix, status or None)
        return [
            self._project(node)
            for node in nodes
            if node.name.startswith(self.prefix) and status_matches(node.status, status)
        ]

    async def active(self) -> list[LiveNode]:
        """List converged nodes only."""
        return await self.list_nodes("ACTIVE")

    # === Destroy ===

    async def destroy(self, confirm: Confirm) -> RunReport:
        """
        Destroy every live node of the cluster after operator confirmation.

        Args:
            confirm: Yes/no gate, called once before anything is deleted

        Returns:
            Report with one outcome per node, or an aborted report
        """
        report = RunReport(operation="node destroy")
        if not confirm("Going to destroy all cluster nodes. Are you sure?"):
            report.error = OperatorAbortedError("node destroy")
            report.record(self._config.cluster, OutcomeStatus.ABORTED, str(report.error))
            logger.warning("node_destroy_aborted", cluster=self._config.cluster)
            return report

        nodes = await self.list_nodes()
        timing = self._config.timing
        table = ProgressTable("Nodes", NODE_HEADERS, self._sink())
        logger.info("node_destroy_started", cluster=self._config.cluster, count=len(nodes))

        async def destroy_one(node: LiveNode) -> None:
            try:
                await self._compute.destroy_instance(node.id)
                table.set(node.short_id, node_row(node.model_copy(update={"status": "DELETING"})))

                async def absent() -> bool:
                    try:
                        await self._compute.get_instance(node.id)
                    except NotFoundError:
                        return True
                    return False

                await poll_until(
                    node.name,
                    absent,
                    lambda gone: gone,
                    interval=timing.poll_interval,
                    timeout=timing.timeout,
                    describe=lambda gone: "DELETED" if gone else "DELETING",
                )
            except Exception as e:
                logger.error("node_destroy_failed", node=node.name, error=str(e))
                report.record(node.name, outcome_status(e), str(e))
                raise

            table.set(node.short_id, node_row(node.model_copy(update={"status": "DELETED"})))
            logger.info("node_deleted", node=node.name, instance_id=node.id)
            report.record(node.name, OutcomeStatus.SUCCEEDED, node.id)

        async with table.live(timing.redraw_interval):
            report.error = await fan_out(nodes, destroy_one)

        return report

    # === Hosts files ===

    async def update_hosts(self) -> RunReport:
        """
        Prepend every cluster node's address and name to /etc/hosts on each
        active node.

        Raises:
            ConfigurationError: If no ssh user is configured
        """
        username = self._config.openstack.ssh_username
        if not username:
            raise ConfigurationError("openstack.ssh_username is required to update hosts files")
        if self._shell is None:
            raise ConfigurationError("no remote shell configured")
        shell = self._shell

        report = RunReport(operation="node dns")
        nodes = await self.list_nodes()
        entries = [f"{node.ipv4} {node.name}" for node in nodes if node.ipv4]
        command = hosts_command(entries)

        async def append(node: LiveNode) -> None:
            try:
                await shell.run(node.ipv4, username, command)
            except Exception as e:
                logger.error("hosts_update_failed", node=node.name, error=str(e))
                report.record(node.name, outcome_status(e), str(e))
                raise
            logger.info("hosts_updated", node=node.name, entries=len(entries))
            report.record(node.name, OutcomeStatus.SUCCEEDED)

        active = [node for node in nodes if node.is_converged and node.ipv4]
        report.error = await fan_out(active, append)
        return report
