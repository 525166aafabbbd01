"""Smoke test runner."""

from typing import Optional

import structlog

from cloudock.core.domain.models import (
    ClusterConfig,
    LiveNode,
    OutcomeStatus,
    RunReport,
    Selection,
    SmokeTest,
    SmokeTestError,
)
from cloudock.core.domain.services.nodes import NodeLifecycleService
from cloudock.core.ports.outbound.http_probe import IHttpProbePort

logger = structlog.get_logger(__name__)


class SmokeTestRunner:
    """
    Runs the HTTP checks declared on each node type against its active nodes.

    Nodes and their tests are visited one at a time. A failing check is
    recorded and the run moves on; it never stops sibling checks.
    """

    def __init__(
        self,
        config: ClusterConfig,
        nodes: NodeLifecycleService,
        probe: IHttpProbePort,
    ):
        self._config = config
        self._nodes = nodes
        self._probe = probe

    async def check(self, test: SmokeTest, node: LiveNode) -> None:
        """
        Run one check against one node.

        Raises:
            SmokeTestError: If the request fails or the body does not match
        """
        auth = (test.auth.username, test.auth.password) if test.auth else None
        try:
            body = await self._probe.get(test.url(node.ipv4), params=test.query or None, auth=auth)
        except Exception as e:
            raise SmokeTestError(test.name, node.name, str(e)) from e
        if not test.passes(body):
            raise SmokeTestError(test.name, node.name, f"unexpected response: {body[:80]!r}")

    async def run(self, selection: Optional[Selection] = None) -> RunReport:
        """Run every declared check; the report error is the first failure."""
        report = RunReport(operation="docker test")
        for node in await self._nodes.active():
            node_type = self._config.node_type(node.role)
            if node_type is None or not node_type.tests:
                continue
            if selection is not None and not selection.is_empty:
                if node.id != selection.node_id and node.role != selection.role:
                    for test in node_type.tests:
                        report.record(f"{node.name} {test.name}", OutcomeStatus.SKIPPED)
                    continue

            logger.info("smoke_tests_started", node=node.name, tests=len(node_type.tests))
            for test in node_type.tests:
                entity = f"{node.name} {test.name}"
                try:
                    await self.check(test, node)
                except SmokeTestError as e:
                    logger.error("smoke_test_failed", node=node.name, test=test.name, reason=e.reason)
                    report.record(entity, OutcomeStatus.FAILED, e.reason)
                    if report.error is None:
                        report.error = e
                    continue
                logger.info("smoke_test_passed", node=node.name, test=test.name)
                report.record(entity, OutcomeStatus.SUCCEEDED)

        return report
