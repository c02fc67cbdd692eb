"""Resilience and consistency orchestration

Primitives for fallible, eventually-consistent mutations:
- retry() / RetryPolicy: bounded retries with fixed (or exponential) delay
- CircuitBreaker: fail fast while a dependency is degraded
- WriteVerifier / verify_write(): write-then-poll until the write is observed
- RetryQueue: bounded-concurrency priority queue with delayed retry and dead-lettering
- SchemaCacheCoordinator: advisory cache refresh hints
- MutationGuard: breaker -> retry -> verify in one call
- DeadLetterQueue: file-based NDJSON store for dead letters
- FeedbackBus: queue saturation signals
- ReconciliationJob: scheduled validate-and-repair sweep over stored records
"""

from .errors import (
    ErrorKind,
    OrchestrationError,
    TransientError,
    PermanentError,
    RetriesExhaustedError,
    VerificationTimeoutError,
    CircuitOpenError,
    classify_error,
)
from .policy import RetryPolicy, retry, with_retry, retry_all, retry_unless_permanent
from .breaker import CircuitBreaker, CircuitState, CircuitSnapshot
from .cache import (
    SchemaCacheCoordinator,
    NoopSchemaCache,
    SettleDelaySchemaCache,
    WarmupReadSchemaCache,
    refresh_advisory,
)
from .verifier import WriteVerifier, VerificationResult, verify_write
from .scheduler import ScheduledTask
from .feedback import BackpressureLevel, FeedbackBus, FeedbackEvent
from .queue import RetryQueue, QueueItem, QueueStats
from .dlq import DeadLetterQueue, DLQRecord
from .guard import MutationGuard, Verification, GuardResult
from .reconciler import ReconciliationJob, ReconciliationReport, ReconciliationStats

__all__ = [
    # errors
    "ErrorKind",
    "OrchestrationError",
    "TransientError",
    "PermanentError",
    "RetriesExhaustedError",
    "VerificationTimeoutError",
    "CircuitOpenError",
    "classify_error",
    # retry
    "RetryPolicy",
    "retry",
    "with_retry",
    "retry_all",
    "retry_unless_permanent",
    # breaker
    "CircuitBreaker",
    "CircuitState",
    "CircuitSnapshot",
    # verification
    "WriteVerifier",
    "VerificationResult",
    "verify_write",
    "SchemaCacheCoordinator",
    "NoopSchemaCache",
    "SettleDelaySchemaCache",
    "WarmupReadSchemaCache",
    "refresh_advisory",
    # queue
    "RetryQueue",
    "QueueItem",
    "QueueStats",
    "ScheduledTask",
    "BackpressureLevel",
    "FeedbackBus",
    "FeedbackEvent",
    # tooling
    "DeadLetterQueue",
    "DLQRecord",
    "MutationGuard",
    "Verification",
    "GuardResult",
    "ReconciliationJob",
    "ReconciliationReport",
    "ReconciliationStats",
]
