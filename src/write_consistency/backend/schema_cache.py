from __future__ import annotations

from loguru import logger

from write_consistency.orchestration.errors import OrchestrationError

from .client import AsyncBackend

# PostgREST listens on this channel and reloads its schema cache on demand.
RELOAD_CHANNEL = "pgrst"
RELOAD_PAYLOAD = "reload schema"


class PostgresSchemaCache:
    """Asks a PostgREST-fronted database to reload its schema cache."""

    def __init__(self, backend: AsyncBackend, *, channel: str = RELOAD_CHANNEL):
        self.backend = backend
        self.channel = channel

    async def refresh(self) -> bool:
        try:
            await self.backend.execute("SELECT pg_notify(%s, %s)", (self.channel, RELOAD_PAYLOAD))
        except OrchestrationError as exc:
            logger.debug(f"Schema reload notify failed: {type(exc).__name__}: {exc}")
            return False
        logger.debug(f"Schema reload requested on channel '{self.channel}'")
        return True
