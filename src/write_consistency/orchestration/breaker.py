"""
Circuit breaker guarding a degraded dependency.

States:
- CLOSED: normal operation, calls pass through
- OPEN: calls rejected immediately with CircuitOpenError
- HALF_OPEN: a single trial call is let through to test recovery

OPEN moves to HALF_OPEN lazily, on the first execute() after the reset
timeout has elapsed; there is no background monitor.

All state is owned by the breaker and mutated only between await points
(single asyncio event loop), so no lock is taken.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from loguru import logger

from write_consistency.metrics.registry import (
    CIRCUIT_REJECTED_TOTAL,
    CIRCUIT_STATE,
    CIRCUIT_TRANSITIONS_TOTAL,
)

from .errors import CircuitOpenError
from .hooks import call_hook
from .types import Classifier, Hook, Operation, T


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


_STATE_GAUGE = {CircuitState.CLOSED: 0, CircuitState.HALF_OPEN: 1, CircuitState.OPEN: 2}


@dataclass(frozen=True)
class CircuitSnapshot:
    """Point-in-time view of a breaker, for health checks and tests."""

    name: str
    state: CircuitState
    failure_count: int
    last_failure_time: Optional[float]
    failure_threshold: int
    reset_timeout_ms: int


class CircuitBreaker:
    """Fail-fast guard for one dependency.

    Example:
        breaker = CircuitBreaker(name="profiles", failure_threshold=3, reset_timeout_ms=10_000)
        profile = await breaker.execute(lambda: client.fetch_profile(user_id))

    Failures are counted consecutively: a success while CLOSED resets the
    count. ``on_open`` fires once per CLOSED -> OPEN transition; a failed
    half-open trial re-opens the circuit without firing it again.
    """

    def __init__(
        self,
        *,
        name: str = "default",
        failure_threshold: int = 5,
        reset_timeout_ms: int = 30_000,
        on_open: Optional[Hook] = None,
        on_close: Optional[Hook] = None,
        on_half_open: Optional[Hook] = None,
        is_failure: Optional[Classifier] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if reset_timeout_ms < 0:
            raise ValueError("reset_timeout_ms must be >= 0")

        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout_ms = reset_timeout_ms
        self._on_open = on_open
        self._on_close = on_close
        self._on_half_open = on_half_open
        self._is_failure = is_failure
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None
        self._trial_in_flight = False

        CIRCUIT_STATE.labels(self.name).set(_STATE_GAUGE[self._state])

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def get_state(self) -> CircuitState:
        """Current state. Does not trigger the OPEN -> HALF_OPEN transition."""
        return self._state

    def snapshot(self) -> CircuitSnapshot:
        return CircuitSnapshot(
            name=self.name,
            state=self._state,
            failure_count=self._failure_count,
            last_failure_time=self._last_failure_time,
            failure_threshold=self.failure_threshold,
            reset_timeout_ms=self.reset_timeout_ms,
        )

    def _trial_deadline(self) -> float:
        """Clock reading from which an OPEN circuit admits a trial call."""
        if self._last_failure_time is None:
            return float("-inf")
        return self._last_failure_time + self.reset_timeout_ms / 1000

    def retry_after_ms(self) -> float:
        """Milliseconds until an OPEN circuit admits a trial call."""
        if self._state is not CircuitState.OPEN:
            return 0.0
        return max(0.0, (self._trial_deadline() - self._clock()) * 1000)

    async def execute(self, operation: Operation[T]) -> T:
        """Run ``operation`` through the breaker.

        Raises:
            CircuitOpenError: circuit is open, or a half-open trial is already running
            Exception: whatever ``operation`` raised (recorded as a failure)
        """
        is_trial = False
        if self._state is CircuitState.OPEN:
            if self._clock() < self._trial_deadline():
                self._reject()
            # claim the trial slot before any hook can yield to other callers
            self._trial_in_flight = True
            is_trial = True
            try:
                await self._transition(CircuitState.HALF_OPEN)
            except BaseException:
                self._trial_in_flight = False
                raise
        elif self._state is CircuitState.HALF_OPEN:
            if self._trial_in_flight:
                self._reject()
            self._trial_in_flight = True
            is_trial = True

        try:
            result = await operation()
        except Exception as exc:
            if is_trial:
                self._trial_in_flight = False
            await self._record_failure(exc, is_trial)
            raise
        except BaseException:
            # Cancelled trial: release the slot without judging the dependency.
            if is_trial:
                self._trial_in_flight = False
            raise

        if is_trial:
            self._trial_in_flight = False
        await self._record_success(is_trial)
        return result

    def _reject(self) -> None:
        CIRCUIT_REJECTED_TOTAL.labels(self.name).inc()
        raise CircuitOpenError(self.name, self.retry_after_ms())

    async def _record_success(self, is_trial: bool) -> None:
        if is_trial and self._state is CircuitState.HALF_OPEN:
            await self._transition(CircuitState.CLOSED)
        elif self._state is CircuitState.CLOSED:
            self._failure_count = 0

    async def _record_failure(self, exc: BaseException, is_trial: bool) -> None:
        if self._is_failure is not None and not self._is_failure(exc):
            logger.debug(
                f"Circuit '{self.name}': {type(exc).__name__} not counted as a failure"
            )
            return

        self._failure_count += 1
        self._last_failure_time = self._clock()
        logger.debug(
            f"Circuit '{self.name}' failure {self._failure_count}/{self.failure_threshold} "
            f"({self._state.value}): {type(exc).__name__}: {exc}"
        )

        if is_trial and self._state is CircuitState.HALF_OPEN:
            await self._transition(CircuitState.OPEN)
        elif (
            self._state is CircuitState.CLOSED
            and self._failure_count >= self.failure_threshold
        ):
            await self._transition(CircuitState.OPEN)

    async def _transition(self, new_state: CircuitState) -> None:
        old_state = self._state
        if old_state is new_state:
            return

        self._state = new_state
        CIRCUIT_STATE.labels(self.name).set(_STATE_GAUGE[new_state])
        CIRCUIT_TRANSITIONS_TOTAL.labels(self.name, new_state.value).inc()

        if new_state is CircuitState.OPEN:
            logger.warning(
                f"Circuit '{self.name}' OPEN after {self._failure_count} failure(s) "
                f"(was {old_state.value}; reset in {self.reset_timeout_ms} ms)"
            )
            if old_state is CircuitState.CLOSED:
                await call_hook(self._on_open, label=f"circuit '{self.name}' on_open")
        elif new_state is CircuitState.HALF_OPEN:
            logger.info(f"Circuit '{self.name}' half-open, admitting a trial call")
            await call_hook(self._on_half_open, label=f"circuit '{self.name}' on_half_open")
        else:
            self._failure_count = 0
            logger.info(f"Circuit '{self.name}' closed")
            await call_hook(self._on_close, label=f"circuit '{self.name}' on_close")

    def reset(self) -> None:
        """Force CLOSED with a zero failure count. Hooks are not invoked."""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time = None
        self._trial_in_flight = False
        CIRCUIT_STATE.labels(self.name).set(_STATE_GAUGE[self._state])
        logger.info(f"Circuit '{self.name}' manually reset")
