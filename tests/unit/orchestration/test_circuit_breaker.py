"""
Unit tests for circuit breaker.
"""

import asyncio

import pytest

from write_consistency.orchestration import (
    CircuitBreaker,
    CircuitOpenError,
    CircuitState,
    PermanentError,
)
from write_consistency.orchestration.errors import is_permanent


class Dependency:
    def __init__(self):
        self.calls = 0
        self.healthy = False

    async def __call__(self):
        self.calls += 1
        await asyncio.sleep(0)
        if not self.healthy:
            raise TimeoutError("upstream timeout")
        return "ok"


async def _fail(cb: CircuitBreaker, dep: Dependency, n: int) -> None:
    for _ in range(n):
        with pytest.raises(TimeoutError):
            await cb.execute(dep)


@pytest.mark.asyncio
async def test_circuit_transition_cycle(clock):
    """threshold failures -> OPEN, fail fast, trial after timeout -> CLOSED."""
    dep = Dependency()
    cb = CircuitBreaker(name="t1", failure_threshold=3, reset_timeout_ms=1_000, clock=clock)

    assert cb.get_state() is CircuitState.CLOSED
    await _fail(cb, dep, 2)
    assert cb.get_state() is CircuitState.CLOSED
    await _fail(cb, dep, 1)
    assert cb.get_state() is CircuitState.OPEN
    assert dep.calls == 3

    # Open: rejected without invoking the operation
    with pytest.raises(CircuitOpenError) as info:
        await cb.execute(dep)
    assert dep.calls == 3
    assert info.value.retry_after_ms == pytest.approx(1_000)

    clock.advance_ms(999)
    with pytest.raises(CircuitOpenError):
        await cb.execute(dep)
    assert dep.calls == 3

    clock.advance_ms(2)
    dep.healthy = True
    assert await cb.execute(dep) == "ok"
    assert dep.calls == 4
    assert cb.get_state() is CircuitState.CLOSED
    assert cb.failure_count == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("reset_ms", [1, 10, 300, 1_000, 30_000])
async def test_trial_admitted_exactly_at_reset_timeout(clock, reset_ms):
    cb = CircuitBreaker(
        name=f"edge-{reset_ms}", failure_threshold=1, reset_timeout_ms=reset_ms, clock=clock
    )
    await _fail(cb, Dependency(), 1)

    clock.advance_ms(reset_ms)
    assert cb.retry_after_ms() == 0

    dep = Dependency()
    dep.healthy = True
    assert await cb.execute(dep) == "ok"
    assert cb.get_state() is CircuitState.CLOSED


@pytest.mark.asyncio
async def test_retry_after_counts_down_to_zero(clock):
    cb = CircuitBreaker(name="countdown", failure_threshold=1, reset_timeout_ms=1_000, clock=clock)
    await _fail(cb, Dependency(), 1)

    clock.advance_ms(250)
    assert cb.retry_after_ms() == pytest.approx(750)
    with pytest.raises(CircuitOpenError) as info:
        await cb.execute(Dependency())
    assert info.value.retry_after_ms == pytest.approx(750)


@pytest.mark.asyncio
async def test_failed_trial_reopens_and_refreshes_failure_time(clock):
    dep = Dependency()
    cb = CircuitBreaker(name="t2", failure_threshold=2, reset_timeout_ms=500, clock=clock)
    await _fail(cb, dep, 2)
    opened_at = cb.snapshot().last_failure_time

    clock.advance_ms(500)
    with pytest.raises(TimeoutError):
        await cb.execute(dep)

    snap = cb.snapshot()
    assert snap.state is CircuitState.OPEN
    assert snap.failure_count == 3
    assert snap.last_failure_time > opened_at

    # the cool-down starts over from the failed trial
    clock.advance_ms(499)
    with pytest.raises(CircuitOpenError):
        await cb.execute(dep)


@pytest.mark.asyncio
async def test_on_open_fires_once_per_closed_to_open(clock):
    opened = []
    dep = Dependency()
    cb = CircuitBreaker(
        name="t3",
        failure_threshold=1,
        reset_timeout_ms=100,
        on_open=lambda: opened.append(True),
        clock=clock,
    )

    await _fail(cb, dep, 1)
    assert len(opened) == 1

    # failed trial: OPEN again, no new alert
    clock.advance_ms(100)
    await _fail(cb, dep, 1)
    assert len(opened) == 1

    # recover, then break again: second alert
    clock.advance_ms(100)
    dep.healthy = True
    await cb.execute(dep)
    dep.healthy = False
    await _fail(cb, dep, 1)
    assert len(opened) == 2


@pytest.mark.asyncio
async def test_half_open_admits_a_single_trial(clock):
    cb = CircuitBreaker(name="t4", failure_threshold=1, reset_timeout_ms=10, clock=clock)
    await _fail(cb, Dependency(), 1)
    clock.advance_ms(10)

    release = asyncio.Event()
    trial_calls = 0

    async def slow_trial():
        nonlocal trial_calls
        trial_calls += 1
        await release.wait()
        return "recovered"

    trial = asyncio.create_task(cb.execute(slow_trial))
    await asyncio.sleep(0)
    assert cb.get_state() is CircuitState.HALF_OPEN

    with pytest.raises(CircuitOpenError):
        await cb.execute(slow_trial)

    release.set()
    assert await trial == "recovered"
    assert trial_calls == 1
    assert cb.get_state() is CircuitState.CLOSED


@pytest.mark.asyncio
async def test_success_resets_consecutive_failures(clock):
    dep = Dependency()
    cb = CircuitBreaker(name="t5", failure_threshold=3, clock=clock)

    await _fail(cb, dep, 2)
    dep.healthy = True
    await cb.execute(dep)
    dep.healthy = False
    await _fail(cb, dep, 2)

    assert cb.get_state() is CircuitState.CLOSED
    assert cb.failure_count == 2


@pytest.mark.asyncio
async def test_is_failure_predicate_skips_permanent_errors(clock):
    cb = CircuitBreaker(
        name="t6",
        failure_threshold=1,
        is_failure=lambda exc: not is_permanent(exc),
        clock=clock,
    )

    async def denied():
        raise PermanentError("row level security")

    with pytest.raises(PermanentError):
        await cb.execute(denied)
    assert cb.get_state() is CircuitState.CLOSED


@pytest.mark.asyncio
async def test_hook_errors_do_not_escape(clock):
    def broken_hook():
        raise RuntimeError("alerting down")

    cb = CircuitBreaker(name="t7", failure_threshold=1, on_open=broken_hook, clock=clock)
    await _fail(cb, Dependency(), 1)
    assert cb.get_state() is CircuitState.OPEN


@pytest.mark.asyncio
async def test_async_hooks_are_awaited(clock):
    events = []

    async def on_open():
        events.append("open")

    async def on_half_open():
        events.append("half_open")

    async def on_close():
        events.append("close")

    dep = Dependency()
    cb = CircuitBreaker(
        name="t8",
        failure_threshold=1,
        reset_timeout_ms=1,
        on_open=on_open,
        on_half_open=on_half_open,
        on_close=on_close,
        clock=clock,
    )
    await _fail(cb, dep, 1)
    clock.advance_ms(1)
    dep.healthy = True
    await cb.execute(dep)

    assert events == ["open", "half_open", "close"]


@pytest.mark.asyncio
async def test_reset_forces_closed(clock):
    cb = CircuitBreaker(name="t9", failure_threshold=1, reset_timeout_ms=60_000, clock=clock)
    await _fail(cb, Dependency(), 1)
    assert cb.get_state() is CircuitState.OPEN

    cb.reset()

    assert cb.get_state() is CircuitState.CLOSED
    assert cb.failure_count == 0
    dep = Dependency()
    dep.healthy = True
    assert await cb.execute(dep) == "ok"


def test_breaker_validation():
    with pytest.raises(ValueError):
        CircuitBreaker(failure_threshold=0)
    with pytest.raises(ValueError):
        CircuitBreaker(reset_timeout_ms=-1)
