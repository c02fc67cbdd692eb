from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Generic, Optional

from .breaker import CircuitBreaker
from .cache import SchemaCacheCoordinator, refresh_advisory
from .errors import CircuitOpenError
from .policy import RetryPolicy, retry
from .types import Operation, Predicate, ReadFn, T
from .verifier import VerificationResult, WriteVerifier


@dataclass(frozen=True)
class Verification(Generic[T]):
    """Read-back check to run after a mutation succeeded."""

    read_fn: ReadFn[T]
    predicate: Predicate[T]
    max_attempts: Optional[int] = None
    interval_ms: Optional[int] = None


@dataclass(frozen=True)
class GuardResult(Generic[T]):
    value: T
    verification: Optional[VerificationResult] = None


class MutationGuard:
    """Runs a mutation through breaker, retry and (optionally) verification.

    ``cache`` is refreshed once between the mutation and the first read,
    unless the verifier carries a cache of its own, which then takes its place.

    Each retry attempt passes through the breaker, so an opening circuit
    stops the retry loop at once: CircuitOpenError is never retried and
    reaches the caller unwrapped.

    Example:
        guard = MutationGuard(name="profiles", breaker=breaker, verifier=WriteVerifier())
        result = await guard.run(
            lambda: client.execute(UPDATE_SQL, params),
            verify=Verification(
                read_fn=lambda: client.fetch_one(SELECT_SQL, params),
                predicate=lambda row: row is not None and row["onboarding_completed"],
            ),
        )
    """

    def __init__(
        self,
        *,
        name: str = "mutation",
        breaker: Optional[CircuitBreaker] = None,
        retry_policy: Optional[RetryPolicy] = None,
        verifier: Optional[WriteVerifier] = None,
        cache: Optional[SchemaCacheCoordinator] = None,
    ):
        self.name = name
        self.breaker = breaker
        self.verifier = verifier or WriteVerifier(name=f"{name}:verify")
        self.cache = cache

        policy = retry_policy or RetryPolicy()
        inner = policy.classify_retryable

        def classify(exc: BaseException) -> bool:
            return not isinstance(exc, CircuitOpenError) and inner(exc)

        self.retry_policy = dataclasses.replace(policy, classify_retryable=classify)

    async def call(self, operation: Operation[T]) -> T:
        """Breaker + retry, no verification."""
        if self.breaker is None:
            return await retry(operation, policy=self.retry_policy, name=self.name)
        breaker = self.breaker
        return await retry(
            lambda: breaker.execute(operation), policy=self.retry_policy, name=self.name
        )

    async def run(
        self, operation: Operation[T], *, verify: Optional[Verification] = None
    ) -> GuardResult[T]:
        """Perform the mutation once (with retries), then confirm it is observable.

        Raises:
            CircuitOpenError: the dependency is known to be degraded
            RetriesExhaustedError: the mutation failed on every attempt
            VerificationTimeoutError: the write was never observed
        """
        value = await self.call(operation)
        if verify is None:
            return GuardResult(value=value)

        if self.verifier.cache is None:
            await refresh_advisory(self.cache)
        observed = await self.verifier.verify(
            verify.read_fn,
            verify.predicate,
            max_attempts=verify.max_attempts,
            interval_ms=verify.interval_ms,
        )
        return GuardResult(value=value, verification=observed)
