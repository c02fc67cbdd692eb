"""
write-consistency

Resilience and consistency orchestration for mutations against an
eventually-consistent relational backend.

Usage:
    from write_consistency import CircuitBreaker, RetryQueue, retry, verify_write

    breaker = CircuitBreaker(name="profiles", failure_threshold=3, reset_timeout_ms=10_000)
    await retry(lambda: breaker.execute(save_profile), max_attempts=3, delay_ms=500)
    await verify_write(load_profile, lambda row: row["onboarding_completed"])
"""

from .orchestration import (
    CircuitBreaker,
    CircuitOpenError,
    CircuitState,
    DeadLetterQueue,
    MutationGuard,
    PermanentError,
    RetriesExhaustedError,
    RetryPolicy,
    RetryQueue,
    TransientError,
    Verification,
    VerificationTimeoutError,
    WriteVerifier,
    retry,
    verify_write,
)

__version__ = "0.1.0"
__all__ = [
    "CircuitBreaker",
    "CircuitOpenError",
    "CircuitState",
    "DeadLetterQueue",
    "MutationGuard",
    "PermanentError",
    "RetriesExhaustedError",
    "RetryPolicy",
    "RetryQueue",
    "TransientError",
    "Verification",
    "VerificationTimeoutError",
    "WriteVerifier",
    "retry",
    "verify_write",
]
