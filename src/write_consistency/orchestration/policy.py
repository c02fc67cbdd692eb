from __future__ import annotations

import asyncio
import dataclasses
import random
import time
from dataclasses import dataclass
from functools import wraps
from typing import Any, Awaitable, Callable, Optional

from loguru import logger

from write_consistency.metrics.registry import RETRY_ATTEMPTS_TOTAL, RETRY_EXHAUSTED_TOTAL

from .errors import RetriesExhaustedError, is_permanent
from .types import Classifier, Operation, T


def retry_all(exc: BaseException) -> bool:
    """Default classifier: every failure is retried."""
    return True


def retry_unless_permanent(exc: BaseException) -> bool:
    """Opt-in classifier that stops on PermanentError-kind failures."""
    return not is_permanent(exc)


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget and delay between failed attempts.

    Fixed backoff by default. ``backoff_multiplier`` > 1 turns it into
    exponential backoff, capped by ``max_delay_ms``; ``jitter`` scales each
    delay into 50-100% of its computed value.
    """

    max_attempts: int = 3
    delay_ms: int = 0
    backoff_multiplier: float = 1.0
    max_delay_ms: Optional[int] = None
    jitter: bool = False
    classify_retryable: Classifier = retry_all

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.delay_ms < 0:
            raise ValueError("delay_ms must be >= 0")
        if self.backoff_multiplier < 1.0:
            raise ValueError("backoff_multiplier must be >= 1.0")

    def next_delay_ms(self, attempt: int) -> int:
        """Delay to wait after the ``attempt``-th failure (1-based)."""
        delay = self.delay_ms * (self.backoff_multiplier ** max(0, attempt - 1))
        if self.max_delay_ms is not None:
            delay = min(delay, self.max_delay_ms)
        if self.jitter:
            delay *= random.uniform(0.5, 1.0)
        return int(delay)


async def retry(
    operation: Operation[T],
    max_attempts: Optional[int] = None,
    delay_ms: Optional[int] = None,
    *,
    policy: Optional[RetryPolicy] = None,
    name: str = "operation",
) -> T:
    """Run ``operation`` until it succeeds or the attempt budget is spent.

    Args:
        operation: zero-argument coroutine function
        max_attempts: total attempts (overrides ``policy.max_attempts``)
        delay_ms: delay between failed attempts (overrides ``policy.delay_ms``)
        policy: full retry policy; defaults to 3 attempts with no delay
        name: label used in logs and metrics

    Returns:
        The first successful result.

    Raises:
        RetriesExhaustedError: every attempt failed; chained to the last failure.
        Exception: a failure the policy classifies as non-retryable, re-raised as-is.
    """
    policy = policy or RetryPolicy()
    overrides: dict[str, Any] = {}
    if max_attempts is not None:
        overrides["max_attempts"] = max_attempts
    if delay_ms is not None:
        overrides["delay_ms"] = delay_ms
    if overrides:
        policy = dataclasses.replace(policy, **overrides)

    started = time.monotonic()
    attempt = 1
    while True:
        try:
            result = await operation()
        except Exception as exc:
            RETRY_ATTEMPTS_TOTAL.labels(name, "failure").inc()
            if not policy.classify_retryable(exc):
                logger.debug(
                    f"{name}: attempt {attempt}/{policy.max_attempts} failed with "
                    f"non-retryable {type(exc).__name__}: {exc}"
                )
                raise
            if attempt >= policy.max_attempts:
                RETRY_EXHAUSTED_TOTAL.labels(name).inc()
                logger.warning(
                    f"{name}: giving up after {attempt} attempt(s) "
                    f"({_elapsed_ms(started):.0f} ms): {type(exc).__name__}: {exc}"
                )
                raise RetriesExhaustedError(name, attempt, exc) from exc
            wait_ms = policy.next_delay_ms(attempt)
            logger.debug(
                f"{name}: attempt {attempt}/{policy.max_attempts} failed "
                f"({type(exc).__name__}: {exc}); retrying in {wait_ms} ms"
            )
            if wait_ms > 0:
                await asyncio.sleep(wait_ms / 1000)
            attempt += 1
            continue

        RETRY_ATTEMPTS_TOTAL.labels(name, "success").inc()
        logger.debug(
            f"{name}: succeeded on attempt {attempt}/{policy.max_attempts} "
            f"after {_elapsed_ms(started):.0f} ms"
        )
        return result


def _elapsed_ms(started: float) -> float:
    return (time.monotonic() - started) * 1000


def with_retry(
    policy: Optional[RetryPolicy] = None, *, name: Optional[str] = None
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Decorator form of :func:`retry` for coroutine functions with arguments.

    Usage:
        @with_retry(RetryPolicy(max_attempts=5, delay_ms=200))
        async def save_profile(profile_id, fields):
            ...
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        label = name or func.__qualname__

        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await retry(lambda: func(*args, **kwargs), policy=policy, name=label)

        return wrapper

    return decorator
