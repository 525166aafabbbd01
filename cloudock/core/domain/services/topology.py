"""Topology iterator - catalog expansion, naming and fan-out."""

import asyncio
from collections.abc import Awaitable, Iterable, Sequence
from typing import Callable, Optional, TypeVar

import structlog

from cloudock.core.domain.models import NodeIdentity, NodeTypeSpec

logger = structlog.get_logger(__name__)

T = TypeVar("T")


# === Naming ===


def node_name(cluster: str, node_type: str, sequence: int) -> str:
    """Name of the sequence-th node of a type, e.g. ``oa-computing-1``."""
    return f"{cluster}-{node_type}-{sequence}"


def node_role(cluster: str, name: str) -> str:
    """
    Extract the node type from a generated node name.

    Returns an empty string for names outside the cluster.
    """
    prefix = f"{cluster}-"
    if not name.startswith(prefix):
        return ""
    role, sep, sequence = name[len(prefix):].rpartition("-")
    if not sep or not sequence.isdigit():
        return ""
    return role


def group_name(cluster: str, group: str) -> str:
    """Provider-side name of a cluster security group."""
    return f"{cluster}-{group}"


def group_plain_name(cluster: str, name: str) -> Optional[str]:
    """Security group name without its cluster prefix, None if not in cluster."""
    prefix = f"{cluster}-"
    if not name.startswith(prefix):
        return None
    return name[len(prefix):]


def expand(cluster: str, node_types: Iterable[NodeTypeSpec]) -> list[NodeIdentity]:
    """
    Expand a node type catalog into concrete node identities.

    Order follows declaration order, then sequence 1..replication.
    """
    return [
        NodeIdentity(
            name=node_name(cluster, node_type.name, sequence),
            type=node_type.name,
            sequence=sequence,
            spec=node_type,
        )
        for node_type in node_types
        for sequence in range(1, node_type.replication + 1)
    ]


# === Fan-out ===


async def fan_out(
    items: Sequence[T],
    op: Callable[[T], Awaitable[None]],
    serial: bool = False,
) -> Optional[Exception]:
    """
    Apply an async operation to every item.

    Serial mode runs items in order and stops at the first error; later items
    are never attempted. Parallel mode runs every item concurrently, waits for
    all of them, and never cancels a sibling because another failed.

    Args:
        items: Targets
        op: Coroutine function raising on failure
        serial: Run one item at a time

    Returns:
        The first error observed, or None
    """
    if serial:
        for item in items:
            try:
                await op(item)
            except Exception as e:
                logger.debug("fan_out_serial_stopped", error=str(e))
                return e
        return None

    errors: list[Exception] = []

    async def _run(item: T) -> None:
        try:
            await op(item)
        except Exception as e:
            errors.append(e)

    await asyncio.gather(*(_run(item) for item in items))
    if errors:
        logger.debug("fan_out_parallel_errors", count=len(errors))
        return errors[0]
    return None
