"""
Saturation feedback for retry queues.

Provides in-process pub/sub for backpressure signals. A RetryQueue publishes
when its backlog crosses the configured watermarks; subscribers (producers
that should slow down, alerting, logging) react to the level.

The bus is an explicit object handed to each queue. There is no module-level
instance.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from loguru import logger


class BackpressureLevel(str, Enum):
    """Backpressure severity levels."""

    OK = "ok"  # at/below low watermark
    SOFT = "soft"  # between watermarks
    HARD = "hard"  # at/above high watermark, producers should back off


@dataclass(frozen=True)
class FeedbackEvent:
    """Immutable saturation event.

    Attributes:
        queue_name: Queue that emitted the event
        queued_items: Items waiting for a worker slot
        processing_items: Items in flight
        high_watermark: Backlog size considered saturated
        level: Backpressure severity
        reason: Optional context (e.g. "high_watermark", "drained")
    """

    queue_name: str
    queued_items: int
    processing_items: int
    high_watermark: int
    level: BackpressureLevel
    reason: str | None = None

    @property
    def utilization(self) -> float:
        """Backlog relative to the high watermark (may exceed 1.0)."""
        return self.queued_items / self.high_watermark if self.high_watermark > 0 else 0.0


class FeedbackSubscriber(Protocol):
    async def __call__(self, event: FeedbackEvent) -> None: ...


class FeedbackBus:
    """In-process pub/sub bus with per-subscriber error isolation.

    Example:
        bus = FeedbackBus()

        async def on_feedback(event: FeedbackEvent):
            if event.level == BackpressureLevel.HARD:
                await slow_down_producer()

        bus.subscribe(on_feedback)
        queue = RetryQueue(process, feedback=bus, high_watermark=500)
    """

    def __init__(self) -> None:
        self._subs: list[FeedbackSubscriber] = []

    def subscribe(self, callback: FeedbackSubscriber) -> None:
        if callback not in self._subs:
            self._subs.append(callback)
            logger.debug(f"Feedback subscriber added (total: {len(self._subs)})")

    def unsubscribe(self, callback: FeedbackSubscriber) -> None:
        """Remove a subscriber. No-op if it was never added."""
        try:
            self._subs.remove(callback)
            logger.debug(f"Feedback subscriber removed (total: {len(self._subs)})")
        except ValueError:
            pass

    async def publish(self, event: FeedbackEvent) -> None:
        """Deliver to every subscriber in registration order, best-effort."""
        if not self._subs:
            return

        logger.debug(
            f"Publishing feedback: queue={event.queue_name} "
            f"level={event.level.value} "
            f"backlog={event.queued_items}/{event.high_watermark} ({event.utilization:.1%})"
        )

        for callback in list(self._subs):
            try:
                await callback(event)
            except Exception as exc:
                logger.debug(f"Feedback subscriber error (ignored): {type(exc).__name__}: {exc}")

    @property
    def subscriber_count(self) -> int:
        return len(self._subs)
