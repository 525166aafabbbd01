import pytest

from cloudock.core.domain.models import (
    ClusterConfig,
    ConcreteRule,
    Direction,
    LiveNode,
    OutcomeStatus,
    ProviderError,
    RuleTemplate,
    SecurityGroup,
    SecurityGroupSpec,
)
from cloudock.core.domain.services.security import (
    SecurityRuleReconciler,
    expand_group,
    expand_rule,
    truncate,
)
from cloudock.core.ports.outbound.network import INetworkPort


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
            "security_groups": {
                "http": {
                    "description": "web access",
                    "rules": [
                        {"port_range_min": 80, "port_range_max": 80, "remote_ip_prefix": "0.0.0.0/0"},
                    ],
                },
                "internal": {
                    "description": "cluster traffic",
                    "rules": [
                        {"port_range_min": 1, "port_range_max": 65535, "remote_roles": ["web"]},
                    ],
                },
            },
        }
    )


class _FakeNetwork(INetworkPort):
    def __init__(self) -> None:
        self.groups: dict[str, SecurityGroup] = {}
        self.rules: list[ConcreteRule] = []
        self.destroyed: list[str] = []
        self.fail_destroy: set[str] = set()
        self.fail_rule_ports: set[int] = set()

    async def create_group(self, name: str, description: str) -> str:
        group_id = f"g-{name}"
        self.groups[group_id] = SecurityGroup(id=group_id, name=name, description=description)
        return group_id

    async def destroy_group(self, group_id: str) -> None:
        if group_id in self.fail_destroy:
            raise ProviderError("in use", status_code=409)
        self.destroyed.append(group_id)
        del self.groups[group_id]

    async def list_groups(self) -> list[SecurityGroup]:
        return list(self.groups.values())

    async def create_rule(self, rule: ConcreteRule) -> str:
        if rule.port_min in self.fail_rule_ports:
            raise ProviderError("rule rejected", status_code=400)
        self.rules.append(rule)
        return f"r-{len(self.rules)}"


def _web(ip: str, name: str = "oa-web-1") -> LiveNode:
    return LiveNode(id=name, name=name, ipv4=ip, status="ACTIVE", role="web")


def test_role_rule_addresses_each_matching_node() -> None:
    template = RuleTemplate(port_range_min=22, port_range_max=22, remote_roles=["web"])
    nodes = [_web("10.0.0.5"), LiveNode(id="d", name="oa-db-1", ipv4="10.0.0.9", role="db")]

    rules = expand_rule("g1", template, nodes)

    assert [r.remote_cidr for r in rules] == ["10.0.0.5"]
    assert rules[0].direction == Direction.INGRESS
    assert rules[0].protocol == "tcp"


def test_role_rule_set_grows_with_roster() -> None:
    template = RuleTemplate(port_range_min=22, port_range_max=22, remote_roles=["web"])
    small = [_web("10.0.0.5")]
    large = small + [_web("10.0.0.6", "oa-web-2")]

    assert len(expand_rule("g1", template, large)) >= len(expand_rule("g1", template, small))
    assert expand_rule("g1", template, []) == []


def test_unaddressable_templates_are_skipped() -> None:
    spec = SecurityGroupSpec(rules=[RuleTemplate(port_range_min=1, port_range_max=2)])
    assert expand_group("g1", spec, [_web("10.0.0.5")]) == []


def test_rule_template_rejects_inverted_port_range() -> None:
    with pytest.raises(ValueError):
        RuleTemplate(port_range_min=90, port_range_max=80, remote_ip_prefix="0.0.0.0/0")


def test_truncate_description() -> None:
    assert truncate("short") == "short"
    assert truncate("x" * 50) == "x" * 40 + "..."


@pytest.mark.asyncio
async def test_create_prefixes_group_names() -> None:
    network = _FakeNetwork()
    reconciler = SecurityRuleReconciler(_config(), network)

    report = await reconciler.create()

    assert report.ok
    assert sorted(g.name for g in network.groups.values()) == ["oa-http", "oa-internal"]


@pytest.mark.asyncio
async def test_update_resolves_roles_against_roster() -> None:
    network = _FakeNetwork()
    reconciler = SecurityRuleReconciler(_config(), network)
    await reconciler.create()
    network.groups["g-default"] = SecurityGroup(id="g-default", name="default")

    report = await reconciler.update(nodes=[_web("10.0.0.5")])

    assert report.ok
    internal = [r for r in network.rules if r.group_id == "g-oa-internal"]
    assert [r.remote_cidr for r in internal] == ["10.0.0.5"]
    assert [r.remote_cidr for r in network.rules if r.group_id == "g-oa-http"] == ["0.0.0.0/0"]


@pytest.mark.asyncio
async def test_update_after_node_removal_adds_no_role_rules() -> None:
    network = _FakeNetwork()
    reconciler = SecurityRuleReconciler(_config(), network)
    await reconciler.create()

    await reconciler.update(nodes=[])

    assert [r for r in network.rules if r.group_id == "g-oa-internal"] == []


@pytest.mark.asyncio
async def test_update_applies_every_rule_before_reporting() -> None:
    network = _FakeNetwork()
    network.fail_rule_ports.add(1)
    reconciler = SecurityRuleReconciler(_config(), network)
    await reconciler.create()

    report = await reconciler.update(nodes=[_web("10.0.0.5"), _web("10.0.0.6", "oa-web-2")])

    assert isinstance(report.error, ProviderError)
    assert report.count(OutcomeStatus.PROVIDER_ERROR) == 2


@pytest.mark.asyncio
async def test_update_skips_groups_without_templates() -> None:
    network = _FakeNetwork()
    network.groups["g-x"] = SecurityGroup(id="g-x", name="oa-legacy")
    reconciler = SecurityRuleReconciler(_config(), network)

    report = await reconciler.update(nodes=[])

    assert report.ok
    assert report.count(OutcomeStatus.SKIPPED) == 1


@pytest.mark.asyncio
async def test_destroy_stops_at_first_failure() -> None:
    network = _FakeNetwork()
    reconciler = SecurityRuleReconciler(_config(), network)
    await reconciler.create()
    first = next(iter(network.groups))
    network.fail_destroy.add(first)

    report = await reconciler.destroy()

    assert isinstance(report.error, ProviderError)
    assert network.destroyed == []
    assert len(network.groups) == 2


@pytest.mark.asyncio
async def test_list_groups_only_shows_cluster_groups() -> None:
    network = _FakeNetwork()
    network.groups["g-d"] = SecurityGroup(id="g-d", name="default", description="d")
    network.groups["g-w"] = SecurityGroup(id="g-w", name="oa-web", description="y" * 45)
    reconciler = SecurityRuleReconciler(_config(), network)

    rows = await reconciler.list_groups()

    assert rows == [["g-w", "oa-web", "y" * 40 + "..."]]
