from typing import Any, Optional

import pytest

from cloudock.core.domain.models import (
    ClusterConfig,
    LiveNode,
    OutcomeStatus,
    ProviderError,
    Selection,
    SmokeTest,
    SmokeTestError,
)
from cloudock.core.domain.services.smoke import SmokeTestRunner
from cloudock.core.ports.outbound.http_probe import IHttpProbePort


def _config() -> ClusterConfig:
    return ClusterConfig.model_validate(
        {
            "cluster": "oa",
            "openstack": {
                "auth_url": "https://keystone.example:5000/v3",
                "username": "u",
                "password": "p",
                "project_name": "proj",
            },
            "node_types": [
                {
                    "name": "web",
                    "image_ref": "i",
                    "flavor_ref": "f",
                    "tests": [
                        {"name": "home", "port": 8080, "path": "/", "should_start_with": "<!DOCTYPE"},
                        {
                            "name": "api",
                            "protocol": "https",
                            "port": 8443,
                            "path": "/api",
                            "query": {"q": "status"},
                            "auth": {"username": "admin", "password": "secret"},
                            "should_contain": "ok",
                        },
                    ],
                },
                {"name": "db", "image_ref": "i", "flavor_ref": "f"},
            ],
        }
    )


class _FakeNodes:
    async def active(self) -> list[LiveNode]:
        return [
            LiveNode(id="w1", name="oa-web-1", ipv4="10.0.0.1", status="ACTIVE", role="web"),
            LiveNode(id="w2", name="oa-web-2", ipv4="10.0.0.2", status="ACTIVE", role="web"),
            LiveNode(id="d1", name="oa-db-1", ipv4="10.0.0.3", status="ACTIVE", role="db"),
        ]


class _FakeProbe(IHttpProbePort):
    def __init__(self, bodies: dict[str, Any]) -> None:
        self.bodies = bodies
        self.requests: list[tuple[str, Optional[dict[str, Any]], Optional[tuple[str, str]]]] = []

    async def get(
        self,
        url: str,
        params: Optional[dict[str, Any]] = None,
        auth: Optional[tuple[str, str]] = None,
    ) -> str:
        self.requests.append((url, params, auth))
        body = self.bodies.get(url, "")
        if isinstance(body, Exception):
            raise body
        return body


def test_smoke_test_pass_criteria() -> None:
    test = SmokeTest(name="t", should_start_with="HELLO", should_contain="world")

    assert test.passes("HELLO there")
    assert test.passes("hello world")
    assert not test.passes("hello")
    assert not SmokeTest(name="t").passes("anything")


def test_smoke_test_rejects_unknown_protocol() -> None:
    with pytest.raises(ValueError):
        SmokeTest(name="t", protocol="ftp")


@pytest.mark.asyncio
async def test_all_tests_pass() -> None:
    probe = _FakeProbe(
        {
            "http://10.0.0.1:8080/": "<!DOCTYPE html>",
            "https://10.0.0.1:8443/api": '{"status": "ok"}',
            "http://10.0.0.2:8080/": "<!DOCTYPE html>",
            "https://10.0.0.2:8443/api": "all ok",
        }
    )
    runner = SmokeTestRunner(_config(), _FakeNodes(), probe)

    report = await runner.run()

    assert report.ok
    assert report.count(OutcomeStatus.SUCCEEDED) == 4
    assert ("https://10.0.0.1:8443/api", {"q": "status"}, ("admin", "secret")) in probe.requests
    assert ("http://10.0.0.1:8080/", None, None) in probe.requests


@pytest.mark.asyncio
async def test_failures_never_stop_sibling_tests() -> None:
    probe = _FakeProbe(
        {
            "http://10.0.0.1:8080/": "<html>",
            "https://10.0.0.1:8443/api": ProviderError("connection refused"),
            "http://10.0.0.2:8080/": "<!DOCTYPE html>",
            "https://10.0.0.2:8443/api": "ok",
        }
    )
    runner = SmokeTestRunner(_config(), _FakeNodes(), probe)

    report = await runner.run()

    assert isinstance(report.error, SmokeTestError)
    assert report.error.test_name == "home"
    assert report.error.node_name == "oa-web-1"
    assert report.count(OutcomeStatus.FAILED) == 2
    assert report.count(OutcomeStatus.SUCCEEDED) == 2
    assert len(probe.requests) == 4


@pytest.mark.asyncio
async def test_selection_narrows_nodes() -> None:
    probe = _FakeProbe({"http://10.0.0.2:8080/": "<!DOCTYPE html>", "https://10.0.0.2:8443/api": "ok"})
    runner = SmokeTestRunner(_config(), _FakeNodes(), probe)

    report = await runner.run(Selection(node_id="w2"))

    assert report.ok
    assert {url for url, _, _ in probe.requests} == {"http://10.0.0.2:8080/", "https://10.0.0.2:8443/api"}


@pytest.mark.asyncio
async def test_filtered_nodes_are_reported_as_skipped() -> None:
    probe = _FakeProbe({"http://10.0.0.2:8080/": "<!DOCTYPE html>", "https://10.0.0.2:8443/api": "ok"})
    runner = SmokeTestRunner(_config(), _FakeNodes(), probe)

    report = await runner.run(Selection(node_id="w2"))

    assert report.count(OutcomeStatus.SUCCEEDED) == 2
    skipped = [o.entity for o in report.outcomes if o.status == OutcomeStatus.SKIPPED]
    assert skipped == ["oa-web-1 home", "oa-web-1 api"]
    assert "2 skipped" in report.summary()
