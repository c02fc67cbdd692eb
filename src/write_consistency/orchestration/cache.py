"""
Schema/response cache refresh hints.

A refresh is advisory: it may shorten the window in which a backend serves a
stale view after a write, but nothing relies on it. Confirming that a write is
visible is WriteVerifier's job.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional, Protocol, runtime_checkable

from loguru import logger


@runtime_checkable
class SchemaCacheCoordinator(Protocol):
    """Anything that can ask the backend to refresh its caches."""

    async def refresh(self) -> bool:
        """Issue the hint. True if it was issued, False otherwise."""
        ...


class NoopSchemaCache:
    """Used when the environment offers no refresh technique."""

    async def refresh(self) -> bool:
        return False


class SettleDelaySchemaCache:
    """Waits a fixed time for caches to settle on their own."""

    def __init__(self, settle_ms: int = 250):
        if settle_ms < 0:
            raise ValueError("settle_ms must be >= 0")
        self.settle_ms = settle_ms

    async def refresh(self) -> bool:
        await asyncio.sleep(self.settle_ms / 1000)
        return True


class WarmupReadSchemaCache:
    """Performs a throwaway lightweight read to nudge the cache."""

    def __init__(self, read_fn: Callable[[], Awaitable[Any]]):
        self._read_fn = read_fn

    async def refresh(self) -> bool:
        try:
            await self._read_fn()
        except Exception as exc:
            logger.debug(f"Warm-up read failed: {type(exc).__name__}: {exc}")
            return False
        return True


async def refresh_advisory(coordinator: Optional[SchemaCacheCoordinator]) -> bool:
    """Call ``coordinator.refresh()`` without letting it affect the caller.

    Returns False when no coordinator is configured or the refresh failed.
    Cancellation still propagates.
    """
    if coordinator is None:
        return False
    try:
        ok = bool(await coordinator.refresh())
    except Exception as exc:
        logger.warning(f"Schema cache refresh failed (ignored): {type(exc).__name__}: {exc}")
        return False
    if not ok:
        logger.debug("Schema cache refresh not performed")
    return ok
