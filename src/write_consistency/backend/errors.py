"""
Typed errors for the persistence boundary.

Driver exceptions are mapped exactly once, here, by exception type (and
therefore SQLSTATE). Nothing downstream inspects error message text.
"""

from __future__ import annotations

import psycopg
import psycopg.errors as E

from write_consistency.orchestration.errors import (
    OrchestrationError,
    PermanentError,
    TransientError,
)


class BackendError(OrchestrationError):
    """Backend failure of unknown kind."""


class RetryableError(TransientError):
    """Connection loss, serialization failure, deadlock: retry with backoff."""


class TimeoutExceeded(TransientError):
    """Statement or connection timeout."""


class ConstraintViolation(PermanentError):
    """Unique, foreign key, check or not-null violation."""


class AccessDenied(PermanentError):
    """Insufficient privilege, including row level security denials."""


class InvalidRequest(PermanentError):
    """Malformed SQL, unknown column, bad data."""


def map_db_error(e: Exception) -> OrchestrationError:
    if isinstance(e, OrchestrationError):
        return e
    if isinstance(e, E.QueryCanceled):
        return TimeoutExceeded(str(e))
    if isinstance(e, (E.SerializationFailure, E.DeadlockDetected)):
        return RetryableError(str(e))
    if isinstance(e, E.InsufficientPrivilege):
        return AccessDenied(str(e))
    if isinstance(e, psycopg.IntegrityError):
        return ConstraintViolation(str(e))
    if isinstance(e, psycopg.OperationalError):
        return RetryableError(str(e))
    if isinstance(e, (psycopg.DataError, psycopg.ProgrammingError)):
        return InvalidRequest(str(e))
    return BackendError(str(e))
