"""
Unit tests for RetryPolicy and retry().
"""

import asyncio
import time

import pytest

from write_consistency.orchestration import (
    PermanentError,
    RetriesExhaustedError,
    RetryPolicy,
    TransientError,
    retry,
    retry_unless_permanent,
    with_retry,
)


class Flaky:
    """Operation that fails the first N calls, then returns a value."""

    def __init__(self, fail_first_n: int, exc: Exception | None = None):
        self.fail_first_n = fail_first_n
        self.exc = exc or TimeoutError("transient")
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        await asyncio.sleep(0)
        if self.calls <= self.fail_first_n:
            raise self.exc
        return f"ok@{self.calls}"


@pytest.mark.asyncio
async def test_always_failing_operation_runs_exactly_max_attempts():
    op = Flaky(fail_first_n=100)

    with pytest.raises(RetriesExhaustedError) as info:
        await retry(op, 4, 0)

    assert op.calls == 4
    assert info.value.attempts == 4
    assert isinstance(info.value.last_error, TimeoutError)
    assert info.value.__cause__ is info.value.last_error


@pytest.mark.asyncio
@pytest.mark.parametrize("k", [1, 2, 3])
async def test_success_on_attempt_k_stops_retrying(k):
    op = Flaky(fail_first_n=k - 1)

    result = await retry(op, 5, 0)

    assert result == f"ok@{k}"
    assert op.calls == k


@pytest.mark.asyncio
async def test_single_attempt_failure_is_still_reported_as_exhausted():
    op = Flaky(fail_first_n=1)

    with pytest.raises(RetriesExhaustedError) as info:
        await retry(op, 1, 0)

    assert op.calls == 1
    assert "1 attempt" in str(info.value)


@pytest.mark.asyncio
async def test_fixed_delay_between_failed_attempts():
    op = Flaky(fail_first_n=2)

    started = time.monotonic()
    await retry(op, 3, 50)
    elapsed = time.monotonic() - started

    # two waits of 50ms
    assert elapsed >= 0.09


@pytest.mark.asyncio
async def test_non_retryable_error_is_raised_unwrapped():
    op = Flaky(fail_first_n=10, exc=PermanentError("permission denied"))
    policy = RetryPolicy(max_attempts=5, classify_retryable=retry_unless_permanent)

    with pytest.raises(PermanentError):
        await retry(op, policy=policy)

    assert op.calls == 1


@pytest.mark.asyncio
async def test_default_policy_retries_permanent_errors_too():
    op = Flaky(fail_first_n=10, exc=PermanentError("validation"))

    with pytest.raises(RetriesExhaustedError) as info:
        await retry(op, 3, 0)

    assert op.calls == 3
    assert isinstance(info.value.last_error, PermanentError)


@pytest.mark.asyncio
async def test_arguments_override_policy():
    op = Flaky(fail_first_n=100)
    policy = RetryPolicy(max_attempts=10, delay_ms=1_000)

    with pytest.raises(RetriesExhaustedError):
        await retry(op, 2, 0, policy=policy)

    assert op.calls == 2


@pytest.mark.asyncio
async def test_retry_can_be_cancelled_during_backoff():
    op = Flaky(fail_first_n=100)
    task = asyncio.create_task(retry(op, 5, 10_000))

    await asyncio.sleep(0.02)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert op.calls == 1


@pytest.mark.asyncio
async def test_with_retry_decorator_passes_arguments():
    calls = []

    @with_retry(RetryPolicy(max_attempts=3))
    async def save(profile_id, *, name):
        calls.append((profile_id, name))
        if len(calls) < 2:
            raise TransientError("connection reset")
        return profile_id

    assert await save(7, name="ada") == 7
    assert calls == [(7, "ada"), (7, "ada")]


def test_policy_validation():
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)
    with pytest.raises(ValueError):
        RetryPolicy(delay_ms=-1)


def test_fixed_delay_by_default():
    rp = RetryPolicy(delay_ms=200)
    assert [rp.next_delay_ms(i) for i in range(1, 5)] == [200, 200, 200, 200]


def test_exponential_backoff_curve_with_cap():
    rp = RetryPolicy(delay_ms=50, backoff_multiplier=2.0, max_delay_ms=200)
    vals = [rp.next_delay_ms(i) for i in range(1, 8)]
    assert vals[:3] == [50, 100, 200]
    assert all(v <= 200 for v in vals)


def test_backoff_with_jitter():
    rp = RetryPolicy(delay_ms=100, jitter=True)
    vals = [rp.next_delay_ms(1) for _ in range(20)]
    assert all(50 <= v <= 100 for v in vals)


@pytest.mark.asyncio
async def test_success_logs_attempts_and_elapsed():
    from loguru import logger

    messages = []
    sink_id = logger.add(lambda m: messages.append(m.record["message"]), level="DEBUG")
    try:
        await retry(Flaky(fail_first_n=1), 3, 0, name="timed-save")
    finally:
        logger.remove(sink_id)

    done = [m for m in messages if m.startswith("timed-save: succeeded")]
    assert len(done) == 1
    assert "attempt 2/3" in done[0]
    assert done[0].endswith(" ms")


@pytest.mark.asyncio
async def test_exhaustion_reports_actual_attempts():
    op = Flaky(fail_first_n=100, exc=ConnectionResetError("reset"))

    with pytest.raises(RetriesExhaustedError) as info:
        await retry(op, policy=RetryPolicy(max_attempts=2))

    assert info.value.attempts == op.calls == 2
    assert isinstance(info.value.__cause__, ConnectionResetError)
