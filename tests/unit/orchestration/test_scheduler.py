"""
Unit tests for ScheduledTask.
"""

import asyncio

import pytest

from write_consistency.orchestration.scheduler import ScheduledTask


@pytest.mark.asyncio
async def test_callback_runs_after_delay():
    fired = []
    task = ScheduledTask(20, lambda: fired.append(True), name="t")

    await asyncio.sleep(0.005)
    assert fired == []
    assert not task.fired

    await task.wait()
    assert fired == [True]
    assert task.fired
    assert task.done


@pytest.mark.asyncio
async def test_cancel_before_fire():
    fired = []
    task = ScheduledTask(1_000, lambda: fired.append(True))

    assert task.cancel() is True
    await task.wait()

    assert fired == []
    assert task.done
    assert not task.fired


@pytest.mark.asyncio
async def test_cancel_after_fire_is_rejected():
    task = ScheduledTask(0, lambda: None)
    await task.wait()

    assert task.cancel() is False


@pytest.mark.asyncio
async def test_callback_errors_are_contained():
    def boom():
        raise RuntimeError("callback failed")

    task = ScheduledTask(0, boom)
    await task.wait()

    assert task.fired


@pytest.mark.asyncio
async def test_negative_delay_rejected():
    with pytest.raises(ValueError):
        ScheduledTask(-1, lambda: None)
