from __future__ import annotations

import inspect
from typing import Any, Callable, Optional

from loguru import logger


async def call_hook(hook: Optional[Callable[..., Any]], *args: Any, label: str) -> None:
    """Invoke a sync or async callback; its exceptions are logged, never raised."""
    if hook is None:
        return
    try:
        result = hook(*args)
        if inspect.isawaitable(result):
            await result
    except Exception as exc:
        logger.warning(f"{label} callback error (ignored): {type(exc).__name__}: {exc}")
