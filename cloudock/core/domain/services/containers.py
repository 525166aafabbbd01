"""Container deployment domain service."""

import json
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator, Awaitable
from typing import Any, Callable, Optional

import structlog

from cloudock.core.domain.models import (
    AlreadyInStateError,
    ClusterConfig,
    ContainerCreateOptions,
    ContainerImageSpec,
    EngineContainer,
    EngineImage,
    LiveNode,
    NotFoundError,
    OutcomeStatus,
    ProviderError,
    RunReport,
    Selection,
    outcome_status,
)
from cloudock.core.domain.services.nodes import NodeLifecycleService, SinkFactory
from cloudock.core.domain.services.progress import ProgressTable
from cloudock.core.domain.services.topology import fan_out
from cloudock.core.ports.outbound.container_engine import EngineFactory, IContainerEnginePort

logger = structlog.get_logger(__name__)

PULL_HEADERS = ["Node", "Image", "Status", "Progress"]
PS_HEADERS = ["Node", "Address", "Image", "Status", "Container"]
IMAGES_HEADERS = ["Node", "Address", "Image", "Created"]

DOCKERHOST = "dockerhost"


def parse_progress(payload: str) -> list[dict[str, Any]]:
    """
    Decode line-delimited JSON progress messages.

    Callers pass complete lines; a trailing fragment that does not decode is dropped.
    """
    messages = []
    for line in payload.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            message = json.loads(line)
        except ValueError:
            logger.debug("pull_payload_ignored", payload=line[:80])
            continue
        if isinstance(message, dict):
            messages.append(message)
    return messages


def cluster_hosts(nodes: list[LiveNode]) -> list[str]:
    """``name:address`` entries of every node with an address."""
    return [f"{node.name}:{node.ipv4}" for node in nodes if node.ipv4]


def inject_hosts(
    options: ContainerCreateOptions,
    node: LiveNode,
    hosts: list[str],
) -> ContainerCreateOptions:
    """
    Return a copy of creation options wired for cluster name resolution.

    Host-networked containers share the node's resolver and are left alone.
    Others get every cluster host, a ``dockerhost`` alias for the node itself,
    the container's own hostname, and any declared ``<host>:<alias>`` shortcuts.
    """
    created = options.model_copy(deep=True)
    if created.is_host_network:
        return created

    extra = list(hosts)
    extra.append(f"{DOCKERHOST}:{node.ipv4}")
    if created.hostname:
        extra.append(f"{created.hostname}:{node.ipv4}")

    known = {entry.split(":", 1)[0]: entry.split(":", 1)[1] for entry in hosts}
    for alias in created.host_aliases:
        host, name = alias.split(":", 1)
        address = known.get(host)
        if address is None:
            logger.warning("host_alias_unresolved", alias=alias, node=node.name)
            continue
        extra.append(f"{name}:{address}")

    created.host_config["ExtraHosts"] = extra
    return created


def image_name_of(reference: str, catalog: dict[str, ContainerImageSpec], registry: Optional[str]) -> str:
    """Catalog name of an image reference, falling back to its repository."""
    for spec in catalog.values():
        if reference in (spec.reference(registry), spec.reference()):
            return spec.name
    repo = reference
    if registry and repo.startswith(f"{registry}/"):
        repo = repo[len(registry) + 1:]
    repo = repo.split("@", 1)[0]
    if ":" in repo.rsplit("/", 1)[-1]:
        repo = repo.rsplit(":", 1)[0]
    for spec in catalog.values():
        if spec.repo == repo:
            return spec.name
    return repo


class ContainerDeploymentService:
    """
    Deploys and operates workload containers across the cluster's active nodes.

    Each node runs the images its node type declares. Every node/image pair is
    processed independently, so one failure never blocks the others; the first
    error is reported once the batch has finished.
    """

    def __init__(
        self,
        config: ClusterConfig,
        nodes: NodeLifecycleService,
        engine_factory: EngineFactory,
        sink_factory: Optional[SinkFactory] = None,
    ):
        """
        Initialize container deployment service.

        Args:
            config: Cluster configuration
            nodes: Source of the live roster
            engine_factory: Builds the engine client of a node
            sink_factory: Builds a progress sink for pulls
        """
        self._config = config
        self._nodes = nodes
        self._engine_factory = engine_factory
        self._sink_factory = sink_factory

    @property
    def registry(self) -> Optional[str]:
        return self._config.docker.registry

    @asynccontextmanager
    async def _engine(self, node: LiveNode) -> AsyncIterator[IContainerEnginePort]:
        engine = self._engine_factory(node)
        try:
            yield engine
        finally:
            await engine.close()

    def _role_images(self, role: str) -> list[str]:
        node_type = self._config.node_type(role)
        return list(node_type.images) if node_type else []

    def _selected(self, selection: Optional[Selection], node: LiveNode, image_name: Optional[str], entity_id: Optional[str]) -> bool:
        if selection is None:
            return True
        return selection.matches(node.role, node.id, image_name, entity_id, self._role_images(node.role))

    def _pairs(self, nodes: list[LiveNode]) -> list[tuple[LiveNode, ContainerImageSpec]]:
        return [(node, image) for node in nodes for image in self._config.images_for_role(node.role)]

    # === Pull ===

    @staticmethod
    def _pull_progress(table: ProgressTable, node: LiveNode, image: ContainerImageSpec, message: dict[str, Any]) -> None:
        if message.get("error"):
            raise ProviderError(str(message["error"]), result=message)
        table.set(node.id, [node.name, image.name, message.get("status", ""), message.get("progress", "")])

    async def pull(self, selection: Optional[Selection] = None) -> RunReport:
        """
        Pull every assigned image on every active node.

        Images on one node are pulled in order; a failed pull does not stop the
        next image or any other node.
        """
        report = RunReport(operation="docker pull")
        table = ProgressTable("Pulls", PULL_HEADERS, self._sink_factory() if self._sink_factory else None)
        nodes = await self._nodes.active()
        auth = self._config.docker.registry_auth

        async def pull_one(node: LiveNode, image: ContainerImageSpec) -> None:
            entity = f"{node.name} {image.name}"
            reference = image.reference(self.registry)
            table.set(node.id, [node.name, image.name, "Pulling", ""])
            logger.info("image_pull_started", node=node.name, image=reference)
            try:
                async with self._engine(node) as engine:
                    pending = ""
                    async for payload in engine.pull_image(reference, auth):
                        lines, _, pending = (pending + payload).rpartition("\n")
                        for message in parse_progress(lines):
                            self._pull_progress(table, node, image, message)
                    for message in parse_progress(pending):
                        self._pull_progress(table, node, image, message)
            except Exception as e:
                logger.error("image_pull_failed", node=node.name, image=reference, error=str(e))
                table.set(node.id, [node.name, image.name, "Failed", str(e)])
                report.record(entity, outcome_status(e), str(e))
                raise
            table.set(node.id, [node.name, image.name, "Done", ""])
            logger.info("image_pulled", node=node.name, image=reference)
            report.record(entity, OutcomeStatus.SUCCEEDED, reference)

        async def pull_node(node: LiveNode) -> None:
            first: Optional[Exception] = None
            for image in self._config.images_for_role(node.role):
                if not self._selected(selection, node, image.name, None):
                    report.record(f"{node.name} {image.name}", OutcomeStatus.SKIPPED)
                    continue
                try:
                    await pull_one(node, image)
                except Exception as e:
                    first = first or e
            if first is not None:
                raise first

        async with table.live(self._config.timing.redraw_interval):
            report.error = await fan_out(nodes, pull_node)
        return report

    # === Run ===

    def create_options(
        self,
        image: ContainerImageSpec,
        node: LiveNode,
        hosts: list[str],
    ) -> tuple[dict[str, Any], Optional[str]]:
        """Engine body and container name for running an image on a node."""
        options = inject_hosts(image.run.create, node, hosts)
        body = options.to_engine()
        body["Image"] = image.reference(self.registry)
        if image.run.cmd is not None:
            body["Cmd"] = list(image.run.cmd)
        return body, options.name

    async def _ensure_started(
        self,
        engine: IContainerEnginePort,
        container_id: str,
        options: Optional[dict[str, Any]] = None,
    ) -> None:
        try:
            await engine.start_container(container_id, options)
        except AlreadyInStateError:
            logger.debug("container_already_started", container_id=container_id)

    async def run(self, selection: Optional[Selection] = None) -> RunReport:
        """Create and start a container for every selected node/image pair."""
        report = RunReport(operation="docker run")
        nodes = await self._nodes.active()
        hosts = cluster_hosts(nodes)

        targets = []
        for node, image in self._pairs(nodes):
            if self._selected(selection, node, image.name, None):
                targets.append((node, image))
            else:
                report.record(f"{node.name} {image.name}", OutcomeStatus.SKIPPED, "filtered out")

        async def run_one(target: tuple[LiveNode, ContainerImageSpec]) -> None:
            node, image = target
            entity = f"{node.name} {image.name}"
            body, name = self.create_options(image, node, hosts)
            try:
                async with self._engine(node) as engine:
                    container_id = await engine.create_container(body, name)
                    await self._ensure_started(engine, container_id, image.run.start)
                    await self._ensure_started(engine, container_id)
            except Exception as e:
                logger.error("container_run_failed", node=node.name, image=image.name, error=str(e))
                report.record(entity, outcome_status(e), str(e))
                raise
            logger.info("container_started", node=node.name, image=image.name, container_id=container_id)
            report.record(entity, OutcomeStatus.SUCCEEDED, container_id)

        report.error = await fan_out(targets, run_one)
        return report

    # === Listing ===

    async def _containers(self, report: RunReport) -> list[tuple[LiveNode, EngineContainer]]:
        found: list[tuple[LiveNode, EngineContainer]] = []

        async def list_node(node: LiveNode) -> None:
            try:
                async with self._engine(node) as engine:
                    containers = await engine.list_containers(all=True)
            except Exception as e:
                logger.error("container_list_failed", node=node.name, error=str(e))
                report.record(node.name, outcome_status(e), str(e))
                raise
            found.extend((node, container) for container in containers)

        report.error = await fan_out(await self._nodes.active(), list_node)
        found.sort(key=lambda pair: (pair[0].name, pair[1].id))
        return found

    async def _images(self, report: RunReport) -> list[tuple[LiveNode, EngineImage]]:
        found: list[tuple[LiveNode, EngineImage]] = []

        async def list_node(node: LiveNode) -> None:
            try:
                async with self._engine(node) as engine:
                    images = await engine.list_images()
            except Exception as e:
                logger.error("image_list_failed", node=node.name, error=str(e))
                report.record(node.name, outcome_status(e), str(e))
                raise
            found.extend((node, image) for image in images)

        report.error = await fan_out(await self._nodes.active(), list_node)
        found.sort(key=lambda pair: (pair[0].name, pair[1].id))
        return found

    def _container_selected(self, selection: Optional[Selection], node: LiveNode, container: EngineContainer) -> bool:
        name = image_name_of(container.image, self._config.images, self.registry)
        return self._selected(selection, node, name, container.id)

    async def ps(self, selection: Optional[Selection] = None) -> RunReport:
        """List containers on active nodes; rows follow PS_HEADERS."""
        report = RunReport(operation="docker ps")
        for node, container in await self._containers(report):
            if self._container_selected(selection, node, container):
                report.rows.append([node.name, node.address, container.image, container.status, container.id])
        return report

    async def images(self, selection: Optional[Selection] = None) -> RunReport:
        """List images on active nodes; rows follow IMAGES_HEADERS."""
        report = RunReport(operation="docker images")
        for node, image in await self._images(report):
            tag = image.repo_tags[0] if image.repo_tags else image.id
            name = image_name_of(tag, self._config.images, self.registry)
            if not self._selected(selection, node, name, image.id):
                continue
            created = image.created.isoformat(sep=" ", timespec="seconds") if image.created else ""
            report.rows.append([node.name, node.address, tag, created])
        return report

    # === Lifecycle ===

    async def _each_container(
        self,
        operation: str,
        selection: Optional[Selection],
        action: Callable[[IContainerEnginePort, str], Awaitable[None]],
        benign: tuple[type[Exception], ...],
    ) -> RunReport:
        report = RunReport(operation=operation)
        listed = await self._containers(report)
        listing_error = report.error

        targets = []
        for node, container in listed:
            if self._container_selected(selection, node, container):
                targets.append((node, container))
            else:
                report.record(f"{node.name} {container.short_id}", OutcomeStatus.SKIPPED, "filtered out")

        async def apply(target: tuple[LiveNode, EngineContainer]) -> None:
            node, container = target
            entity = f"{node.name} {container.short_id}"
            try:
                async with self._engine(node) as engine:
                    await action(engine, container.id)
            except benign as e:
                logger.info("container_state_unchanged", operation=operation, node=node.name, container_id=container.id, reason=str(e))
                report.record(entity, OutcomeStatus.SUCCEEDED, str(e))
                return
            except Exception as e:
                logger.error("container_operation_failed", operation=operation, node=node.name, container_id=container.id, error=str(e))
                report.record(entity, outcome_status(e), str(e))
                raise
            logger.info("container_operation_done", operation=operation, node=node.name, container_id=container.id)
            report.record(entity, OutcomeStatus.SUCCEEDED)

        report.error = await fan_out(targets, apply) or listing_error
        return report

    async def start(self, selection: Optional[Selection] = None) -> RunReport:
        """Start selected containers."""
        return await self._each_container(
            "docker start",
            selection,
            lambda engine, cid: engine.start_container(cid),
            (AlreadyInStateError, NotFoundError),
        )

    async def stop(self, selection: Optional[Selection] = None) -> RunReport:
        """Stop selected containers."""
        return await self._each_container(
            "docker stop",
            selection,
            lambda engine, cid: engine.stop_container(cid),
            (AlreadyInStateError, NotFoundError),
        )

    async def rm(self, selection: Optional[Selection] = None) -> RunReport:
        """Remove selected containers."""
        return await self._each_container(
            "docker rm",
            selection,
            lambda engine, cid: engine.remove_container(cid),
            (AlreadyInStateError, NotFoundError),
        )

    async def rmi(self, selection: Optional[Selection] = None) -> RunReport:
        """Remove selected images from active nodes."""
        report = RunReport(operation="docker rmi")
        listed = await self._images(report)
        listing_error = report.error

        targets = []
        for node, image in listed:
            tag = image.repo_tags[0] if image.repo_tags else image.id
            if self._selected(selection, node, image_name_of(tag, self._config.images, self.registry), image.id):
                targets.append((node, image))
            else:
                report.record(f"{node.name} {tag}", OutcomeStatus.SKIPPED, "filtered out")

        async def remove(target: tuple[LiveNode, EngineImage]) -> None:
            node, image = target
            entity = f"{node.name} {image.repo_tags[0] if image.repo_tags else image.id}"
            try:
                async with self._engine(node) as engine:
                    await engine.remove_image(image.id)
            except Exception as e:
                logger.error("image_remove_failed", node=node.name, image_id=image.id, error=str(e))
                report.record(entity, outcome_status(e), str(e))
                raise
            logger.info("image_removed", node=node.name, image_id=image.id)
            report.record(entity, OutcomeStatus.SUCCEEDED)

        report.error = await fan_out(targets, remove) or listing_error
        return report
