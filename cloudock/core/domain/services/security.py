"""Security group reconciliation domain service."""

from typing import Optional

import structlog

from cloudock.core.domain.models import (
    ClusterConfig,
    ConcreteRule,
    LiveNode,
    OutcomeStatus,
    RuleTemplate,
    RunReport,
    SecurityGroup,
    SecurityGroupSpec,
    outcome_status,
)
from cloudock.core.domain.services.nodes import NodeLifecycleService
from cloudock.core.domain.services.topology import fan_out, group_name, group_plain_name
from cloudock.core.ports.outbound.network import INetworkPort

logger = structlog.get_logger(__name__)

GROUP_HEADERS = ["Id", "Name", "Description"]
DESCRIPTION_WIDTH = 40


def expand_rule(group_id: str, template: RuleTemplate, nodes: list[LiveNode]) -> list[ConcreteRule]:
    """
    Resolve one rule template against the live roster.

    A static prefix yields one rule; remote roles yield one rule per node whose
    role is listed, addressed to that node. Templates with neither yield none.
    """
    remotes: list[str] = []
    if template.remote_roles:
        remotes.extend(
            node.ipv4 for node in nodes if node.role in template.remote_roles and node.ipv4
        )
    if template.remote_ip_prefix:
        remotes.append(template.remote_ip_prefix)

    return [
        ConcreteRule(
            group_id=group_id,
            direction=template.direction,
            ethertype=template.ethertype,
            protocol=template.protocol,
            port_min=template.port_range_min,
            port_max=template.port_range_max,
            remote_cidr=remote,
        )
        for remote in remotes
    ]


def expand_group(group_id: str, spec: SecurityGroupSpec, nodes: list[LiveNode]) -> list[ConcreteRule]:
    """Resolve every addressable template of a group."""
    rules: list[ConcreteRule] = []
    for template in spec.rules:
        if not template.is_addressable:
            logger.debug("rule_template_skipped", group_id=group_id)
            continue
        rules.extend(expand_rule(group_id, template, nodes))
    return rules


def truncate(text: str, width: int = DESCRIPTION_WIDTH) -> str:
    """Shorten text for display."""
    return text if len(text) <= width else text[:width] + "..."


class SecurityRuleReconciler:
    """
    Creates cluster security groups and fills them with concrete rules.

    Reconciliation is additive: rules are created, never diffed against what
    the group already holds, so running update twice on the same group
    creates duplicates.
    """

    def __init__(
        self,
        config: ClusterConfig,
        network: INetworkPort,
        nodes: Optional[NodeLifecycleService] = None,
    ):
        self._config = config
        self._network = network
        self._nodes = nodes

    async def cluster_groups(self) -> list[SecurityGroup]:
        """Provider-side groups whose name carries the cluster prefix."""
        groups = await self._network.list_groups()
        return [g for g in groups if group_plain_name(self._config.cluster, g.name) is not None]

    async def create(self, specs: Optional[dict[str, SecurityGroupSpec]] = None) -> RunReport:
        """Create one provider group per declared group."""
        specs = specs if specs is not None else self._config.security_groups
        report = RunReport(operation="secgroup create")

        async def create_one(name: str) -> None:
            full_name = group_name(self._config.cluster, name)
            try:
                group_id = await self._network.create_group(full_name, specs[name].description)
            except Exception as e:
                logger.error("secgroup_create_failed", group=full_name, error=str(e))
                report.record(full_name, outcome_status(e), str(e))
                raise
            logger.info("secgroup_created", group=full_name, group_id=group_id)
            report.record(full_name, OutcomeStatus.SUCCEEDED, group_id)

        report.error = await fan_out(list(specs), create_one)
        return report

    async def update(
        self,
        specs: Optional[dict[str, SecurityGroupSpec]] = None,
        nodes: Optional[list[LiveNode]] = None,
    ) -> RunReport:
        """
        Apply concrete rules to every cluster group.

        Args:
            specs: Templates by plain group name, defaults to the configured ones
            nodes: Live roster with roles projected, fetched when not given

        Returns:
            Report with one outcome per concrete rule
        """
        specs = specs if specs is not None else self._config.security_groups
        report = RunReport(operation="secgroup update")
        if nodes is None:
            if self._nodes is None:
                raise ValueError("a node roster or node service is required")
            nodes = await self._nodes.list_nodes()
        groups = await self.cluster_groups()
        logger.info("secgroup_update_started", groups=len(groups), nodes=len(nodes))

        async def update_group(group: SecurityGroup) -> None:
            plain = group_plain_name(self._config.cluster, group.name) or ""
            spec = specs.get(plain)
            if spec is None:
                logger.warning("secgroup_not_declared", group=group.name)
                report.record(group.name, OutcomeStatus.SKIPPED, "no rule templates declared")
                return

            async def apply(rule: ConcreteRule) -> None:
                entity = f"{group.name} {rule.protocol}/{rule.port_min}-{rule.port_max} {rule.remote_cidr}"
                try:
                    await self._network.create_rule(rule)
                except Exception as e:
                    logger.error("secgroup_rule_failed", group=group.name, error=str(e))
                    report.record(entity, outcome_status(e), str(e))
                    raise
                report.record(entity, OutcomeStatus.SUCCEEDED)

            error = await fan_out(expand_group(group.id, spec, nodes), apply)
            if error is not None:
                raise error
            logger.info("secgroup_updated", group=group.name, group_id=group.id)

        report.error = await fan_out(groups, update_group, serial=True)
        return report

    async def destroy(self) -> RunReport:
        """Delete cluster groups one at a time, stopping at the first failure."""
        report = RunReport(operation="secgroup destroy")
        groups = await self.cluster_groups()

        async def destroy_one(group: SecurityGroup) -> None:
            try:
                await self._network.destroy_group(group.id)
            except Exception as e:
                logger.error("secgroup_destroy_failed", group=group.name, error=str(e))
                report.record(group.name, outcome_status(e), str(e))
                raise
            logger.info("secgroup_deleted", group=group.name, group_id=group.id)
            report.record(group.name, OutcomeStatus.SUCCEEDED, group.id)

        report.error = await fan_out(groups, destroy_one, serial=True)
        return report

    async def list_groups(self) -> list[list[str]]:
        """Display rows of the cluster groups."""
        return [[g.id, g.name, truncate(g.description)] for g in await self.cluster_groups()]
