"""Domain layer - orchestration logic and models."""

from cloudock.core.domain.models import (
    ClusterConfig,
    ConcreteRule,
    ContainerImageSpec,
    EntityOutcome,
    LiveNode,
    NodeIdentity,
    NodeTypeSpec,
    OutcomeStatus,
    RuleTemplate,
    RunReport,
    SecurityGroup,
    SecurityGroupSpec,
    Selection,
)

__all__ = [
    "ClusterConfig",
    "NodeTypeSpec",
    "NodeIdentity",
    "LiveNode",
    "SecurityGroupSpec",
    "SecurityGroup",
    "RuleTemplate",
    "ConcreteRule",
    "ContainerImageSpec",
    "Selection",
    "OutcomeStatus",
    "EntityOutcome",
    "RunReport",
]
