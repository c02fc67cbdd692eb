"""
Exceptions for the orchestration layer.

Failure kinds are carried by type, never by message text. Backends map their
driver errors once into TransientError / PermanentError (see
write_consistency.backend.errors); everything downstream reads ErrorKind.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Structured failure classification."""

    TRANSIENT = "transient"  # network / timeout class, retryable
    PERMANENT = "permanent"  # validation / permission class
    UNKNOWN = "unknown"


class OrchestrationError(Exception):
    """Base error for the orchestration layer."""

    kind: ErrorKind = ErrorKind.UNKNOWN


class TransientError(OrchestrationError):
    """Network/timeout-class failure that is worth retrying."""

    kind = ErrorKind.TRANSIENT


class PermanentError(OrchestrationError):
    """Validation or permission-denied class failure."""

    kind = ErrorKind.PERMANENT


class RetriesExhaustedError(OrchestrationError):
    """All attempts of a retried operation failed.

    The last underlying failure is available as ``last_error`` and as
    ``__cause__``.
    """

    def __init__(self, name: str, attempts: int, last_error: BaseException):
        self.name = name
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"{name} failed after {attempts} attempt(s): "
            f"{type(last_error).__name__}: {last_error}"
        )

    @property
    def kind(self) -> ErrorKind:  # type: ignore[override]
        return classify_error(self.last_error)


class VerificationTimeoutError(OrchestrationError):
    """The verification predicate never held within the polling budget."""

    def __init__(
        self,
        attempts: int,
        last_value: Any = None,
        last_error: BaseException | None = None,
        *,
        name: str = "verification",
    ):
        self.name = name
        self.attempts = attempts
        self.last_value = last_value
        self.last_error = last_error
        super().__init__(f"{name} timed out after {attempts} poll(s)")


class CircuitOpenError(OrchestrationError):
    """Fail-fast signal: the guarded dependency is known to be degraded."""

    kind = ErrorKind.TRANSIENT

    def __init__(self, name: str, retry_after_ms: float = 0.0):
        self.name = name
        self.retry_after_ms = retry_after_ms
        super().__init__(f"circuit '{name}' is open (retry after {retry_after_ms:.0f} ms)")


def classify_error(exc: BaseException) -> ErrorKind:
    """Return the ErrorKind of an exception, using types only."""
    if isinstance(exc, OrchestrationError):
        return exc.kind
    if isinstance(exc, (TimeoutError, asyncio.TimeoutError, ConnectionError)):
        return ErrorKind.TRANSIENT
    if isinstance(exc, PermissionError):
        return ErrorKind.PERMANENT
    return ErrorKind.UNKNOWN


def is_permanent(exc: BaseException) -> bool:
    return classify_error(exc) is ErrorKind.PERMANENT
