"""
Demo script for RetryQueue + CircuitBreaker + DeadLetterQueue.

Simulates a flaky profile store: some saves fail transiently, one user is
always rejected. Exhausted items land in an NDJSON dead letter file.
"""

import asyncio
import random
from dataclasses import dataclass

from loguru import logger

from write_consistency.orchestration import (
    BackpressureLevel,
    CircuitBreaker,
    DeadLetterQueue,
    FeedbackBus,
    FeedbackEvent,
    PermanentError,
    RetryQueue,
    VerificationTimeoutError,
    verify_write,
)


@dataclass
class ProfileUpdate:
    user_id: int
    onboarding_completed: bool = True


class FlakyStore:
    """In-memory store with random transient failures and a lagging read path."""

    def __init__(self, failure_rate: float = 0.3):
        self.failure_rate = failure_rate
        self.rows: dict[int, bool] = {}

    async def save(self, update: ProfileUpdate) -> None:
        await asyncio.sleep(0.01)
        if update.user_id == 13:
            raise PermanentError("new row violates row-level security policy")
        if random.random() < self.failure_rate:
            raise TimeoutError("statement timeout")
        asyncio.get_running_loop().call_later(
            0.05, self.rows.__setitem__, update.user_id, update.onboarding_completed
        )

    async def read(self, user_id: int) -> bool | None:
        return self.rows.get(user_id)


async def on_feedback(event: FeedbackEvent):
    if event.level == BackpressureLevel.HARD:
        logger.warning(f"⚠️  Backlog HIGH ({event.queued_items}/{event.high_watermark})")
    elif event.level == BackpressureLevel.OK:
        logger.info("✅ Backlog recovered")


async def main():
    store = FlakyStore()
    breaker = CircuitBreaker(
        name="profiles",
        failure_threshold=5,
        reset_timeout_ms=200,
        on_open=lambda: logger.warning("🔌 Circuit opened"),
        on_close=lambda: logger.info("🔌 Circuit closed"),
    )
    dlq = DeadLetterQueue[ProfileUpdate](".dlq/profiles.ndjson")
    bus = FeedbackBus()
    bus.subscribe(on_feedback)

    async def process(update: ProfileUpdate) -> None:
        await breaker.execute(lambda: store.save(update))

    async with RetryQueue(
        process,
        concurrency=4,
        max_retries=3,
        retry_delay_ms=100,
        on_error=dlq.as_error_handler(source="demo"),
        name="profiles",
        feedback=bus,
        high_watermark=20,
    ) as queue:
        logger.info("🚀 Enqueueing 50 profile updates")
        for user_id in range(50):
            queue.enqueue(ProfileUpdate(user_id), priority=1 if user_id % 10 == 0 else 0)

        while not queue.is_empty():
            stats = queue.get_stats()
            logger.info(
                f"Queued: {stats.queued_items} | In flight: {stats.processing_items} | "
                f"Waiting retry: {stats.delayed_items} | Circuit: {breaker.get_state().value}"
            )
            await asyncio.sleep(0.1)

    try:
        result = await verify_write(
            lambda: store.read(0), lambda done: done is True, max_attempts=5, interval_ms=50
        )
        logger.info(f"✅ user 0 visible after {result.attempts} poll(s)")
    except VerificationTimeoutError as e:
        logger.warning(f"user 0 never became visible: {e}")

    records = await dlq.replay()
    logger.info(f"Dead letters: {len(records)}")
    for rec in records:
        logger.info(f"  {rec.items} -> {rec.error} (attempts={rec.metadata['attempts']})")


if __name__ == "__main__":
    asyncio.run(main())
