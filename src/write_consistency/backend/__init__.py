"""
Persistence boundary for the orchestration layer.

Usage:
    from write_consistency.backend import AsyncBackend, PostgresSchemaCache

    async with AsyncBackend({"dsn": "postgresql://...", "app_name": "profiles"}) as db:
        breaker = CircuitBreaker(name="db")
        await breaker.execute(lambda: db.execute(UPDATE_SQL, params))
"""

from .client import AsyncBackend, BackendConfig, batch_select, row_select
from .errors import (
    BackendError,
    RetryableError,
    TimeoutExceeded,
    ConstraintViolation,
    AccessDenied,
    InvalidRequest,
    map_db_error,
)
from .schema_cache import PostgresSchemaCache

__all__ = [
    "AsyncBackend",
    "BackendConfig",
    "row_select",
    "batch_select",
    "BackendError",
    "RetryableError",
    "TimeoutExceeded",
    "ConstraintViolation",
    "AccessDenied",
    "InvalidRequest",
    "map_db_error",
    "PostgresSchemaCache",
]
