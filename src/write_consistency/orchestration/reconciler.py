"""
Scheduled consistency reconciliation.

A ReconciliationJob periodically reads a batch of records, checks each one
with ``validator`` and hands the ids of the invalid ones to ``repair``.
WriteVerifier confirms a single write right after it happened; this job
sweeps afterwards for writes that never landed correctly.

Example:
    job = ReconciliationJob(
        lambda: db.fetch_all(batch_select("profiles"), (100,)),
        lambda row: row["onboarding_completed"] is not None,
        repair=backfill_onboarding,
        interval_ms=60_000,
        name="profiles-reconcile",
    )
    async with job:
        ...
"""

from __future__ import annotations

import asyncio
import operator
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, Optional, Sequence

from loguru import logger

from write_consistency.metrics.registry import (
    RECONCILE_PROBLEMS_TOTAL,
    RECONCILE_REPAIRS_TOTAL,
    RECONCILE_RUNS_TOTAL,
)

from .hooks import call_hook
from .types import T


@dataclass(frozen=True)
class ReconciliationReport:
    """Outcome of one pass. ``error`` is set when the pass itself failed."""

    checked: int
    problem_ids: list[Any] = field(default_factory=list)
    fixed: int = 0
    failed: int = 0
    error: Optional[BaseException] = None


@dataclass(frozen=True)
class ReconciliationStats:
    last_run: Optional[float]
    problem_count: int
    fixed_count: int
    is_running: bool
    runs: int = 0


class ReconciliationJob(Generic[T]):
    """Periodic validate-and-repair pass over a batch of records.

    Passes never overlap: ``run_now()`` while a pass is in progress returns
    None without touching the data. A failing ``repair`` is logged and
    counted; the remaining problem records are still attempted. A failure of
    the pass itself (batch read, validator) goes to ``on_error``.

    ``problem_count`` and ``fixed_count`` accumulate over the job's life.
    """

    def __init__(
        self,
        fetch_batch: Callable[[], Awaitable[Sequence[T]]],
        validator: Callable[[T], bool],
        *,
        id_of: Optional[Callable[[T], Any]] = None,
        repair: Optional[Callable[[Any], Awaitable[Any]]] = None,
        on_error: Optional[Callable[[BaseException], Any]] = None,
        interval_ms: int = 60_000,
        name: str = "reconciliation",
        clock: Callable[[], float] = time.time,
    ):
        if interval_ms < 1:
            raise ValueError("interval_ms must be >= 1")

        self.name = name
        self.interval_ms = interval_ms
        self._fetch_batch = fetch_batch
        self._validator = validator
        self._id_of = id_of or operator.itemgetter("id")
        self._repair = repair
        self._on_error = on_error
        self._clock = clock

        self._running = False
        self._last_run: Optional[float] = None
        self._problem_count = 0
        self._fixed_count = 0
        self._runs = 0
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def is_running(self) -> bool:
        return self._running

    def get_stats(self) -> ReconciliationStats:
        return ReconciliationStats(
            last_run=self._last_run,
            problem_count=self._problem_count,
            fixed_count=self._fixed_count,
            is_running=self._running,
            runs=self._runs,
        )

    async def run_now(self) -> Optional[ReconciliationReport]:
        """Run one pass immediately. Returns None if a pass is already running."""
        if self._running:
            RECONCILE_RUNS_TOTAL.labels(self.name, "skipped").inc()
            logger.debug(f"{self.name}: previous pass still running, skipped")
            return None

        self._running = True
        self._last_run = self._clock()
        self._runs += 1
        try:
            report = await self._pass()
        except Exception as exc:
            RECONCILE_RUNS_TOTAL.labels(self.name, "error").inc()
            logger.error(f"{self.name}: pass failed: {type(exc).__name__}: {exc}")
            await call_hook(self._on_error, exc, label=f"{self.name} on_error")
            return ReconciliationReport(checked=0, error=exc)
        finally:
            self._running = False

        RECONCILE_RUNS_TOTAL.labels(self.name, "ok").inc()
        return report

    async def _pass(self) -> ReconciliationReport:
        records = await self._fetch_batch()
        problems = [self._id_of(r) for r in records if not self._validator(r)]
        if not problems:
            logger.debug(f"{self.name}: {len(records)} record(s) checked, all valid")
            return ReconciliationReport(checked=len(records))

        self._problem_count += len(problems)
        RECONCILE_PROBLEMS_TOTAL.labels(self.name).inc(len(problems))
        logger.warning(f"{self.name}: {len(problems)} of {len(records)} record(s) need fixing")

        fixed = failed = 0
        if self._repair is not None:
            for record_id in problems:
                try:
                    await self._repair(record_id)
                except Exception as exc:
                    failed += 1
                    RECONCILE_REPAIRS_TOTAL.labels(self.name, "failed").inc()
                    logger.error(
                        f"{self.name}: repairing {record_id!r} failed: {type(exc).__name__}: {exc}"
                    )
                else:
                    fixed += 1
                    self._fixed_count += 1
                    RECONCILE_REPAIRS_TOTAL.labels(self.name, "fixed").inc()

        return ReconciliationReport(
            checked=len(records), problem_ids=problems, fixed=fixed, failed=failed
        )

    # ---------- lifecycle ----------

    async def start(self) -> None:
        """Run a pass now, then every ``interval_ms`` until stopped."""
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(self._loop(), name=f"{self.name}-loop")
        logger.info(f"{self.name}: started (interval={self.interval_ms} ms)")

    async def stop(self) -> None:
        """Stop scheduling passes. A pass in progress is cancelled."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        logger.info(f"{self.name}: stopped")

    async def __aenter__(self) -> "ReconciliationJob[T]":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def _loop(self) -> None:
        while True:
            await self.run_now()
            await asyncio.sleep(self.interval_ms / 1000)
