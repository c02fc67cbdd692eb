from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional

from loguru import logger


class ScheduledTask:
    """Delayed callback backed by an owned asyncio task.

    The task sleeps ``delay_ms`` and then runs ``callback``. ``cancel()``
    aborts it before the callback runs; once the callback has started it runs
    to completion.
    """

    def __init__(self, delay_ms: float, callback: Callable[[], Any], *, name: Optional[str] = None):
        if delay_ms < 0:
            raise ValueError("delay_ms must be >= 0")
        self.delay_ms = delay_ms
        self.name = name or "scheduled-task"
        self._callback = callback
        self._fired = False
        self._task: asyncio.Task[None] = asyncio.get_running_loop().create_task(
            self._run(), name=self.name
        )

    async def _run(self) -> None:
        await asyncio.sleep(self.delay_ms / 1000)
        self._fired = True
        try:
            self._callback()
        except Exception as exc:
            logger.warning(f"{self.name}: callback error: {type(exc).__name__}: {exc}")

    @property
    def fired(self) -> bool:
        return self._fired

    @property
    def done(self) -> bool:
        return self._task.done()

    def cancel(self) -> bool:
        """Cancel if the callback has not run yet. Returns True if cancelled."""
        if self._fired or self._task.done():
            return False
        return self._task.cancel()

    async def wait(self) -> None:
        """Wait for the task to finish (fired or cancelled)."""
        try:
            await asyncio.shield(self._task)
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise
