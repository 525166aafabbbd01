import asyncio

import pytest

from cloudock.core.domain.models import ConvergenceTimeoutError
from cloudock.core.domain.services.polling import Deadline, poll_until


class _Clock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def test_deadline_uses_injected_clock() -> None:
    clock = _Clock()
    deadline = Deadline(10.0, clock=clock)

    clock.now += 4
    assert deadline.elapsed() == 4
    assert deadline.remaining() == 6
    assert not deadline.expired()

    clock.now += 7
    assert deadline.remaining() == 0
    assert deadline.expired()


@pytest.mark.asyncio
async def test_poll_until_returns_first_converged_sample() -> None:
    states = iter(["BUILD", "BUILD", "RUNNING", "RUNNING"])
    calls: list[str] = []

    async def probe() -> str:
        state = next(states)
        calls.append(state)
        return state

    result = await poll_until("n1", probe, lambda s: s == "RUNNING", interval=0.001, timeout=5)

    assert result == "RUNNING"
    assert calls == ["BUILD", "BUILD", "RUNNING"]


@pytest.mark.asyncio
async def test_poll_until_times_out_with_last_state() -> None:
    async def probe() -> str:
        return "BUILD"

    with pytest.raises(ConvergenceTimeoutError) as exc_info:
        await poll_until("n1", probe, lambda s: s == "RUNNING", interval=0.01, timeout=0.05)

    assert exc_info.value.entity == "n1"
    assert exc_info.value.last_state == "BUILD"


@pytest.mark.asyncio
async def test_poll_until_propagates_probe_errors() -> None:
    async def probe() -> str:
        raise RuntimeError("provider down")

    with pytest.raises(RuntimeError, match="provider down"):
        await poll_until("n1", probe, lambda s: True, interval=0.01, timeout=1)


@pytest.mark.asyncio
async def test_poll_until_stops_when_cancelled() -> None:
    cancel = asyncio.Event()
    samples = 0

    async def probe() -> str:
        nonlocal samples
        samples += 1
        if samples == 2:
            cancel.set()
        return "BUILD"

    with pytest.raises(ConvergenceTimeoutError):
        await poll_until("n1", probe, lambda s: False, interval=0.01, timeout=10, cancel=cancel)

    assert samples == 2
