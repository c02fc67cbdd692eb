from __future__ import annotations

from functools import lru_cache
from typing import Any, Awaitable, Callable, Optional, Sequence

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from write_consistency.orchestration import (
    CircuitBreaker,
    FeedbackBus,
    RetryPolicy,
    RetryQueue,
    ReconciliationJob,
    WriteVerifier,
)
from write_consistency.orchestration.types import ErrorHook, Hook, ProcessFn


class OrchestrationSettings(BaseSettings):
    """Runtime defaults, overridable with WRITE_CONSISTENCY_* env vars or .env."""

    model_config = SettingsConfigDict(
        env_prefix="WRITE_CONSISTENCY_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    database_url: Optional[str] = None
    app_name: str = "write-consistency"
    statement_timeout_ms: Optional[int] = None

    retry_max_attempts: int = Field(3, ge=1)
    retry_delay_ms: int = Field(1_000, ge=0)
    retry_backoff_multiplier: float = Field(1.0, ge=1.0)

    breaker_failure_threshold: int = Field(5, ge=1)
    breaker_reset_timeout_ms: int = Field(30_000, ge=0)

    verify_max_attempts: int = Field(5, ge=1)
    verify_interval_ms: int = Field(300, ge=0)

    queue_concurrency: int = Field(2, ge=1)
    queue_max_retries: int = Field(3, ge=1)
    queue_retry_delay_ms: int = Field(5_000, ge=0)
    queue_high_watermark: Optional[int] = Field(None, ge=1)

    reconcile_interval_ms: int = Field(60_000, ge=1)

    dlq_path: Optional[str] = None
    log_level: str = "INFO"

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.retry_max_attempts,
            delay_ms=self.retry_delay_ms,
            backoff_multiplier=self.retry_backoff_multiplier,
        )

    def circuit_breaker(self, name: str, *, on_open: Optional[Hook] = None) -> CircuitBreaker:
        return CircuitBreaker(
            name=name,
            failure_threshold=self.breaker_failure_threshold,
            reset_timeout_ms=self.breaker_reset_timeout_ms,
            on_open=on_open,
        )

    def write_verifier(self, name: str = "verification") -> WriteVerifier:
        return WriteVerifier(
            max_attempts=self.verify_max_attempts,
            interval_ms=self.verify_interval_ms,
            name=name,
        )

    def retry_queue(
        self,
        process_fn: ProcessFn,
        *,
        name: str = "retry-queue",
        on_error: Optional[ErrorHook] = None,
        feedback: Optional[FeedbackBus] = None,
    ) -> RetryQueue:
        return RetryQueue(
            process_fn,
            concurrency=self.queue_concurrency,
            max_retries=self.queue_max_retries,
            retry_delay_ms=self.queue_retry_delay_ms,
            on_error=on_error,
            name=name,
            feedback=feedback,
            high_watermark=self.queue_high_watermark,
        )

    def reconciliation_job(
        self,
        fetch_batch: Callable[[], Awaitable[Sequence[Any]]],
        validator: Callable[[Any], bool],
        *,
        name: str = "reconciliation",
        id_of: Optional[Callable[[Any], Any]] = None,
        repair: Optional[Callable[[Any], Awaitable[Any]]] = None,
        on_error: Optional[Callable[[BaseException], Any]] = None,
    ) -> ReconciliationJob:
        return ReconciliationJob(
            fetch_batch,
            validator,
            id_of=id_of,
            repair=repair,
            on_error=on_error,
            interval_ms=self.reconcile_interval_ms,
            name=name,
        )


@lru_cache()
def get_settings() -> OrchestrationSettings:
    return OrchestrationSettings()
