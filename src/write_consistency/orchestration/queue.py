from __future__ import annotations

import asyncio
import heapq
import itertools
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Generic, Optional

from loguru import logger

from write_consistency.metrics.registry import (
    QUEUE_DEAD_LETTERS_TOTAL,
    QUEUE_DEPTH,
    QUEUE_IN_FLIGHT,
    QUEUE_PROCESSED_TOTAL,
)

from .feedback import BackpressureLevel, FeedbackBus, FeedbackEvent
from .hooks import call_hook
from .scheduler import ScheduledTask
from .types import ErrorHook, P, ProcessFn


@dataclass
class QueueItem(Generic[P]):
    """One unit of queued work. ``attempts`` counts failed processing runs."""

    id: str
    payload: P
    priority: int
    max_retries: int
    attempts: int = 0
    created_at: float = field(default_factory=time.time)
    last_error: Optional[BaseException] = None


@dataclass(frozen=True)
class QueueStats:
    queued_items: int
    processing_items: int
    paused: bool
    delayed_items: int = 0


class RetryQueue(Generic[P]):
    """Priority queue with bounded concurrency, delayed retry and dead-lettering.

    Items are handed to ``process_fn`` highest priority first; equal
    priorities keep insertion order. A failed item is put back after
    ``retry_delay_ms`` until it has failed ``max_retries`` times, then it is
    dropped and ``on_error(error, item)`` is called once.

    Without ``on_error`` a dead letter is only visible in the logs and the
    ``wc_queue_dead_letters_total`` metric. Register a handler (for example
    ``DeadLetterQueue.as_error_handler()``) wherever dropped work matters.

    Ordering is only decided among items present at dequeue time: an item
    returning from its retry delay goes behind equal-priority items already
    waiting and can be overtaken by newer, higher-priority arrivals.

    Example:
        async with RetryQueue(save_profile, concurrency=2, on_error=report) as q:
            q.enqueue(profile, priority=5)
            await q.join()
    """

    def __init__(
        self,
        process_fn: ProcessFn[P],
        *,
        concurrency: int = 2,
        max_retries: int = 3,
        retry_delay_ms: int = 5_000,
        on_error: Optional[ErrorHook] = None,
        name: str = "retry-queue",
        feedback: Optional[FeedbackBus] = None,
        high_watermark: Optional[int] = None,
        low_watermark: Optional[int] = None,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        if retry_delay_ms < 0:
            raise ValueError("retry_delay_ms must be >= 0")
        if high_watermark is not None and high_watermark < 1:
            raise ValueError("high_watermark must be >= 1")

        self.name = name
        self.concurrency = concurrency
        self.max_retries = max_retries
        self.retry_delay_ms = retry_delay_ms
        self._process_fn = process_fn
        self._on_error = on_error

        self._feedback = feedback
        self._high_wm = high_watermark
        self._low_wm = (
            low_watermark
            if low_watermark is not None
            else (high_watermark // 2 if high_watermark is not None else None)
        )
        self._level = BackpressureLevel.OK

        self._heap: list[tuple[int, int, QueueItem[P]]] = []
        self._seq = itertools.count()
        self._in_flight: dict[str, asyncio.Task[None]] = {}
        self._in_flight_items: dict[str, QueueItem[P]] = {}
        self._delayed: dict[str, tuple[QueueItem[P], ScheduledTask]] = {}

        self._paused = False
        self._closed = False
        self._wakeup = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()
        self._dispatcher: Optional[asyncio.Task[None]] = None

        if on_error is None:
            logger.warning(
                f"RetryQueue '{name}' has no on_error handler: "
                f"dead-lettered items will only be logged"
            )

    # ---------- producer side ----------

    def enqueue(self, payload: P, priority: int = 0, max_retries: Optional[int] = None) -> str:
        """Add work and return its item id. Never blocks."""
        if self._closed:
            raise RuntimeError(f"RetryQueue '{self.name}' is stopped")
        retries = self.max_retries if max_retries is None else max_retries
        if retries < 1:
            raise ValueError("max_retries must be >= 1")

        item = QueueItem(
            id=f"{self.name}-{uuid.uuid4().hex[:12]}",
            payload=payload,
            priority=priority,
            max_retries=retries,
        )
        self._push(item)
        logger.debug(f"{self.name}: enqueued {item.id} (priority={priority})")
        return item.id

    def cancel(self, item_id: str) -> bool:
        """Withdraw a queued or retry-delayed item. In-flight items are not touched."""
        delayed = self._delayed.pop(item_id, None)
        if delayed is not None:
            delayed[1].cancel()
            self._after_change()
            logger.debug(f"{self.name}: cancelled delayed item {item_id}")
            return True

        for i, (_, _, item) in enumerate(self._heap):
            if item.id == item_id:
                self._heap.pop(i)
                heapq.heapify(self._heap)
                self._after_change()
                logger.debug(f"{self.name}: cancelled queued item {item_id}")
                return True
        return False

    # ---------- control ----------

    def pause(self) -> None:
        """Stop pulling new work. In-flight items finish normally."""
        self._paused = True
        logger.info(f"{self.name}: paused")

    def resume(self) -> None:
        self._paused = False
        self._wakeup.set()
        logger.info(f"{self.name}: resumed")

    @property
    def paused(self) -> bool:
        return self._paused

    def get_stats(self) -> QueueStats:
        return QueueStats(
            queued_items=len(self._heap),
            processing_items=len(self._in_flight),
            paused=self._paused,
            delayed_items=len(self._delayed),
        )

    def is_empty(self) -> bool:
        return not self._heap and not self._in_flight and not self._delayed

    async def join(self) -> None:
        """Wait until nothing is queued, in flight, or waiting for a retry."""
        await self._idle.wait()

    # ---------- lifecycle ----------

    async def start(self) -> None:
        if self._dispatcher is not None and not self._dispatcher.done():
            return
        self._closed = False
        self._dispatcher = asyncio.create_task(self._run(), name=f"{self.name}-dispatcher")
        self._wakeup.set()
        logger.info(f"{self.name}: started (concurrency={self.concurrency})")

    async def stop(self, drain: bool = True, timeout: Optional[float] = None) -> list[QueueItem[P]]:
        """Stop the queue and return the items it never finished.

        With ``drain`` the queue first waits (up to ``timeout`` seconds) for
        all work, retries included, to settle. A paused queue is not drained.
        """
        if drain and self._dispatcher is not None:
            if self._paused:
                logger.warning(f"{self.name}: paused, stopping without drain")
            else:
                try:
                    await asyncio.wait_for(self.join(), timeout)
                except asyncio.TimeoutError:
                    logger.warning(f"{self.name}: drain timed out ({self.get_stats()})")

        self._closed = True
        abandoned: list[QueueItem[P]] = [item for _, _, item in sorted(self._heap)]
        self._heap.clear()

        for item, task in self._delayed.values():
            task.cancel()
            abandoned.append(item)
        self._delayed.clear()

        if self._dispatcher is not None:
            self._dispatcher.cancel()
            await asyncio.gather(self._dispatcher, return_exceptions=True)
            self._dispatcher = None

        if self._in_flight:
            abandoned.extend(self._in_flight_items.values())
            tasks = list(self._in_flight.values())
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        self._after_change()
        if abandoned:
            logger.warning(
                f"{self.name}: stopped with {len(abandoned)} unfinished item(s): "
                f"{[item.id for item in abandoned]}"
            )
        else:
            logger.info(f"{self.name}: stopped")
        return abandoned

    async def __aenter__(self) -> "RetryQueue[P]":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop(drain=exc_type is None)

    # ---------- internals ----------

    def _push(self, item: QueueItem[P]) -> None:
        heapq.heappush(self._heap, (-item.priority, next(self._seq), item))
        self._idle.clear()
        self._wakeup.set()
        self._update_gauges()

    def _requeue(self, item: QueueItem[P]) -> None:
        self._delayed.pop(item.id, None)
        if self._closed:
            return
        logger.debug(f"{self.name}: requeued {item.id} (attempts={item.attempts})")
        self._push(item)

    def _after_change(self) -> None:
        self._update_gauges()
        if self.is_empty():
            self._idle.set()

    def _update_gauges(self) -> None:
        QUEUE_DEPTH.labels(self.name).set(len(self._heap))
        QUEUE_IN_FLIGHT.labels(self.name).set(len(self._in_flight))

    async def _run(self) -> None:
        while True:
            await self._wakeup.wait()
            self._wakeup.clear()

            while (
                not self._paused
                and self._heap
                and len(self._in_flight) < self.concurrency
            ):
                _, _, item = heapq.heappop(self._heap)
                self._in_flight_items[item.id] = item
                self._in_flight[item.id] = asyncio.create_task(
                    self._process(item), name=f"{self.name}:{item.id}"
                )

            self._update_gauges()
            await self._publish_level()

    async def _process(self, item: QueueItem[P]) -> None:
        try:
            await self._process_fn(item.payload)
        except Exception as exc:
            item.attempts += 1
            item.last_error = exc
            QUEUE_PROCESSED_TOTAL.labels(self.name, "failure").inc()
            if item.attempts < item.max_retries:
                logger.debug(
                    f"{self.name}: {item.id} failed ({item.attempts}/{item.max_retries}): "
                    f"{type(exc).__name__}: {exc}; retrying in {self.retry_delay_ms} ms"
                )
                task = ScheduledTask(
                    self.retry_delay_ms,
                    lambda: self._requeue(item),
                    name=f"{self.name}:{item.id}:retry",
                )
                self._delayed[item.id] = (item, task)
            else:
                await self._dead_letter(item, exc)
        else:
            QUEUE_PROCESSED_TOTAL.labels(self.name, "success").inc()
            logger.debug(f"{self.name}: {item.id} processed")
        finally:
            self._in_flight.pop(item.id, None)
            self._in_flight_items.pop(item.id, None)
            self._wakeup.set()
            self._after_change()

    async def _dead_letter(self, item: QueueItem[P], exc: BaseException) -> None:
        QUEUE_DEAD_LETTERS_TOTAL.labels(self.name).inc()
        if self._on_error is None:
            logger.error(
                f"{self.name}: {item.id} dead-lettered after {item.attempts} attempt(s) "
                f"and no on_error handler is registered: {type(exc).__name__}: {exc}"
            )
            return
        logger.warning(
            f"{self.name}: {item.id} dead-lettered after {item.attempts} attempt(s): "
            f"{type(exc).__name__}: {exc}"
        )
        await call_hook(self._on_error, exc, item, label=f"{self.name} on_error")

    async def _publish_level(self) -> None:
        if self._feedback is None or self._high_wm is None:
            return

        queued = len(self._heap)
        if queued >= self._high_wm:
            level, reason = BackpressureLevel.HARD, "high_watermark"
        elif queued <= (self._low_wm or 0):
            level, reason = BackpressureLevel.OK, "drained"
        else:
            level, reason = BackpressureLevel.SOFT, "backlog"

        if level is self._level:
            return
        self._level = level
        await self._feedback.publish(
            FeedbackEvent(
                queue_name=self.name,
                queued_items=queued,
                processing_items=len(self._in_flight),
                high_watermark=self._high_wm,
                level=level,
                reason=reason,
            )
        )


def describe(item: QueueItem[Any]) -> dict[str, Any]:
    """JSON-friendly view of a queue item."""
    return {
        "id": item.id,
        "priority": item.priority,
        "attempts": item.attempts,
        "max_retries": item.max_retries,
        "created_at": item.created_at,
        "last_error": repr(item.last_error) if item.last_error is not None else None,
    }
