"""Deadline-bounded polling."""

import asyncio
import time
from collections.abc import Awaitable
from typing import Callable, Optional, TypeVar

import structlog

from cloudock.core.domain.models import ConvergenceTimeoutError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class Deadline:
    """A time budget measured on a monotonic clock."""

    def __init__(self, timeout: float, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._timeout = timeout
        self._start = clock()

    @property
    def timeout(self) -> float:
        return self._timeout

    def elapsed(self) -> float:
        return self._clock() - self._start

    def remaining(self) -> float:
        return max(0.0, self._timeout - self.elapsed())

    def expired(self) -> bool:
        return self.remaining() <= 0


async def poll_until(
    entity: str,
    probe: Callable[[], Awaitable[T]],
    done: Callable[[T], bool],
    interval: float,
    timeout: float,
    cancel: Optional[asyncio.Event] = None,
    describe: Callable[[T], str] = str,
) -> T:
    """
    Sample a probe until it satisfies a predicate.

    The first sample is taken immediately, then one every interval. Polling stops
    as soon as the predicate holds. Errors raised by the probe propagate and end
    the loop.

    Args:
        entity: Name used in logs and errors
        probe: Coroutine function returning the current state
        done: Convergence predicate
        interval: Seconds between samples
        timeout: Time budget in seconds
        cancel: Event that stops waiting early
        describe: Renders a state for the timeout error

    Returns:
        The sample that satisfied the predicate

    Raises:
        ConvergenceTimeoutError: If the budget runs out or cancel is set
    """
    deadline = Deadline(timeout)
    last: Optional[str] = None
    samples = 0

    while True:
        state = await probe()
        samples += 1
        last = describe(state)
        if done(state):
            logger.debug("poll_converged", entity=entity, samples=samples, elapsed=deadline.elapsed())
            return state

        if deadline.expired() or (cancel is not None and cancel.is_set()):
            break

        wait = min(interval, deadline.remaining())
        if cancel is None:
            await asyncio.sleep(wait)
        else:
            try:
                await asyncio.wait_for(cancel.wait(), timeout=wait)
            except asyncio.TimeoutError:
                pass

        if deadline.expired() or (cancel is not None and cancel.is_set()):
            break

    logger.warning("poll_timed_out", entity=entity, samples=samples, last_state=last)
    raise ConvergenceTimeoutError(entity, timeout, last)
