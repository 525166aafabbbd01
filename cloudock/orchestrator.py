"""Cloudock - composition root wiring providers into orchestration services."""

from typing import Optional

import structlog

from cloudock.core.adapters.docker_adapter import docker_engine_factory
from cloudock.core.adapters.http_probe_adapter import AiohttpProbeAdapter
from cloudock.core.adapters.openstack_adapter import (
    NeutronNetworkAdapter,
    NovaComputeAdapter,
    OpenStackSession,
)
from cloudock.core.adapters.ssh_adapter import SshRemoteShellAdapter
from cloudock.core.domain.models import ClusterConfig, OutcomeStatus, RunReport
from cloudock.core.domain.services.containers import ContainerDeploymentService
from cloudock.core.domain.services.nodes import Confirm, NodeLifecycleService, SinkFactory
from cloudock.core.domain.services.security import SecurityRuleReconciler
from cloudock.core.domain.services.smoke import SmokeTestRunner
from cloudock.core.ports.outbound.compute import IComputePort
from cloudock.core.ports.outbound.container_engine import EngineFactory
from cloudock.core.ports.outbound.http_probe import IHttpProbePort
from cloudock.core.ports.outbound.network import INetworkPort
from cloudock.core.ports.outbound.remote_shell import IRemoteShellPort

logger = structlog.get_logger(__name__)


class Cloudock:
    """
    Orchestrates one cluster described by a ClusterConfig.

    Collaborators default to the OpenStack, Docker, HTTP, and ssh adapters;
    any of them can be injected instead.

    Usage:
        cloudock = Cloudock(load_config("cluster.yaml"))
        try:
            reports = await cloudock.launch()
        finally:
            await cloudock.close()
    """

    def __init__(
        self,
        config: ClusterConfig,
        compute: Optional[IComputePort] = None,
        network: Optional[INetworkPort] = None,
        engine_factory: Optional[EngineFactory] = None,
        probe: Optional[IHttpProbePort] = None,
        shell: Optional[IRemoteShellPort] = None,
        sink_factory: Optional[SinkFactory] = None,
    ):
        """
        Initialize cloudock.

        Args:
            config: Cluster configuration
            compute: Compute provider, Nova when None
            network: Network provider, Neutron when None
            engine_factory: Container engine clients, Docker when None
            probe: Smoke test HTTP client, aiohttp when None
            shell: Remote shell, system ssh when None
            sink_factory: Progress renderer for live tables
        """
        self._config = config
        self._openstack: Optional[OpenStackSession] = None
        if compute is None or network is None:
            self._openstack = OpenStackSession(config.openstack)

        self._compute = compute or NovaComputeAdapter(self._openstack)
        self._network = network or NeutronNetworkAdapter(self._openstack)
        self._probe = probe or AiohttpProbeAdapter()

        self.nodes = NodeLifecycleService(
            config,
            self._compute,
            sink_factory=sink_factory,
            shell=shell or SshRemoteShellAdapter(),
        )
        self.security = SecurityRuleReconciler(config, self._network, self.nodes)
        self.containers = ContainerDeploymentService(
            config,
            self.nodes,
            engine_factory or docker_engine_factory(config.docker),
            sink_factory=sink_factory,
        )
        self.smoke = SmokeTestRunner(config, self.nodes, self._probe)

    @property
    def config(self) -> ClusterConfig:
        return self._config

    # === Composite flows ===

    async def launch(self) -> list[RunReport]:
        """
        Bring the cluster up: groups, nodes, group rules, hosts files.

        Stops at the first step whose report carries an error. The hosts
        file step is skipped when no ssh user is configured.
        """
        reports: list[RunReport] = []
        steps = [self.security.create, self.nodes.create, self.security.update]

        for step in steps:
            report = await step()
            reports.append(report)
            logger.info("launch_step_finished", summary=report.summary())
            if not report.ok:
                logger.error("launch_stopped", operation=report.operation, error=str(report.error))
                return reports

        if self._config.openstack.ssh_username:
            reports.append(await self.nodes.update_hosts())
        else:
            report = RunReport(operation="node dns")
            report.record(self._config.cluster, OutcomeStatus.SKIPPED, "no ssh user configured")
            reports.append(report)
            logger.warning("launch_dns_skipped", reason="no ssh user configured")
        return reports

    async def teardown(self, confirm: Confirm) -> list[RunReport]:
        """Destroy nodes, then security groups; groups are kept if nodes fail."""
        destroyed = await self.nodes.destroy(confirm)
        if not destroyed.ok:
            logger.error("teardown_stopped", error=str(destroyed.error))
            return [destroyed]
        return [destroyed, await self.security.destroy()]

    async def close(self) -> None:
        """Release provider sessions."""
        await self._probe.close()
        await self._compute.close()
        await self._network.close()
