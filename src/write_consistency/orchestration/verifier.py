"""
Write-then-verify polling.

The caller performs its mutation once, elsewhere. The verifier then reads
back through ``read_fn`` until ``predicate`` holds or the poll budget is
spent. Success is only reported for a value the predicate accepted; running
out of polls always raises VerificationTimeoutError.

Known limitation: concurrent verifications of the same logical key are not
coordinated. Each caller polls on its own, so N waiters on one row issue N
read streams.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Generic, Optional

from loguru import logger

from write_consistency.metrics.registry import VERIFY_POLLS, VERIFY_TOTAL

from .cache import SchemaCacheCoordinator, refresh_advisory
from .errors import VerificationTimeoutError
from .types import Predicate, ReadFn, T

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_INTERVAL_MS = 300


@dataclass(frozen=True)
class VerificationResult(Generic[T]):
    """First observed value that satisfied the predicate."""

    value: T
    attempts: int
    elapsed_ms: float


class WriteVerifier:
    """Reusable verifier carrying default poll settings.

    Example:
        verifier = WriteVerifier(max_attempts=5, interval_ms=300)
        await client.update_profile(user_id, {"onboarding_completed": True})
        result = await verifier.verify(
            lambda: client.fetch_profile(user_id),
            lambda row: row is not None and row["onboarding_completed"],
        )
    """

    def __init__(
        self,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        interval_ms: int = DEFAULT_INTERVAL_MS,
        cache: Optional[SchemaCacheCoordinator] = None,
        name: str = "verification",
    ):
        _validate(max_attempts, interval_ms)
        self.max_attempts = max_attempts
        self.interval_ms = interval_ms
        self.cache = cache
        self.name = name

    async def verify(
        self,
        read_fn: ReadFn[T],
        predicate: Predicate[T],
        *,
        max_attempts: Optional[int] = None,
        interval_ms: Optional[int] = None,
        name: Optional[str] = None,
    ) -> VerificationResult[T]:
        return await verify_write(
            read_fn,
            predicate,
            max_attempts=self.max_attempts if max_attempts is None else max_attempts,
            interval_ms=self.interval_ms if interval_ms is None else interval_ms,
            cache=self.cache,
            name=name or self.name,
        )


async def verify_write(
    read_fn: ReadFn[T],
    predicate: Predicate[T],
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    interval_ms: int = DEFAULT_INTERVAL_MS,
    cache: Optional[SchemaCacheCoordinator] = None,
    name: str = "verification",
) -> VerificationResult[T]:
    """Poll ``read_fn`` until ``predicate`` accepts the value read.

    A read that raises counts as an unsatisfied poll. ``cache`` (if given) is
    asked for an advisory refresh once, before the first read.

    Raises:
        VerificationTimeoutError: after exactly ``max_attempts`` unsatisfied
            polls; chained to the last read error, if any.
    """
    _validate(max_attempts, interval_ms)
    await refresh_advisory(cache)

    started = time.monotonic()
    last_value: Optional[T] = None
    last_error: Optional[BaseException] = None

    for attempt in range(1, max_attempts + 1):
        try:
            value = await read_fn()
        except Exception as exc:
            last_error = exc
            logger.debug(
                f"{name}: poll {attempt}/{max_attempts} read failed: {type(exc).__name__}: {exc}"
            )
        else:
            last_value = value
            if predicate(value):
                elapsed_ms = (time.monotonic() - started) * 1000
                VERIFY_TOTAL.labels(name, "verified").inc()
                VERIFY_POLLS.labels(name).observe(attempt)
                if attempt > 1:
                    logger.debug(f"{name}: observed after {attempt} polls ({elapsed_ms:.0f} ms)")
                return VerificationResult(value=value, attempts=attempt, elapsed_ms=elapsed_ms)
            logger.debug(f"{name}: poll {attempt}/{max_attempts} not yet visible")

        if attempt < max_attempts and interval_ms > 0:
            await asyncio.sleep(interval_ms / 1000)

    VERIFY_TOTAL.labels(name, "timeout").inc()
    VERIFY_POLLS.labels(name).observe(max_attempts)
    logger.warning(f"{name}: write not observed after {max_attempts} polls")
    raise VerificationTimeoutError(
        max_attempts, last_value=last_value, last_error=last_error, name=name
    ) from last_error


def _validate(max_attempts: int, interval_ms: int) -> None:
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")
    if interval_ms < 0:
        raise ValueError("interval_ms must be >= 0")
