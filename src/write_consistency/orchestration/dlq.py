"""
File-backed dead letter queue (NDJSON, one record per line).

Records hold the failed payloads, the error text and free-form metadata.
Hook it to a RetryQueue so exhausted items are kept on disk:

    dlq = DeadLetterQueue(".dlq/profiles.ndjson")
    queue = RetryQueue(save_profile, on_error=dlq.as_error_handler())
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Generic, Iterable, Sequence

from loguru import logger
from pydantic import BaseModel

from .queue import QueueItem, describe
from .types import T


@dataclass(frozen=True)
class DLQRecord:
    ts: float
    error: str
    items: list[Any]
    metadata: dict[str, Any] = field(default_factory=dict)


def _to_jsonable(obj: Any) -> Any:
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return dataclasses.asdict(obj)
    return str(obj)


class DeadLetterQueue(Generic[T]):
    """Append-only NDJSON store for work that could not be completed."""

    def __init__(self, path: str | Path, *, mkdirs: bool = True):
        self.path = Path(path)
        if mkdirs:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()

    async def save(
        self,
        items: Sequence[T],
        error: BaseException | str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Append one record holding ``items``."""
        err = error if isinstance(error, str) else f"{type(error).__name__}: {error}"
        line = json.dumps(
            {
                "ts": time.time(),
                "error": err,
                "items": list(items),
                "metadata": metadata or {},
            },
            default=_to_jsonable,
        )
        async with self._lock:
            await asyncio.to_thread(self._append, line)
        logger.debug(f"DLQ {self.path}: saved {len(items)} item(s) ({err})")

    def _append(self, line: str) -> None:
        with self.path.open("a", encoding="utf-8") as fh:
            fh.write(line + "\n")

    async def replay(self, max_records: int = 100) -> list[DLQRecord]:
        """Read up to ``max_records`` records, oldest first."""
        if not self.path.exists():
            return []
        async with self._lock:
            lines = await asyncio.to_thread(self._read_lines)
        return list(self._parse(lines, max_records))

    def _read_lines(self) -> list[str]:
        with self.path.open("r", encoding="utf-8") as fh:
            return fh.readlines()

    def _parse(self, lines: Iterable[str], max_records: int) -> Iterable[DLQRecord]:
        count = 0
        for raw in lines:
            if count >= max_records:
                return
            raw = raw.strip()
            if not raw:
                continue
            try:
                obj = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning(f"DLQ {self.path}: skipping malformed line")
                continue
            count += 1
            yield DLQRecord(
                ts=float(obj.get("ts", 0.0)),
                error=str(obj.get("error", "")),
                items=list(obj.get("items", [])),
                metadata=dict(obj.get("metadata", {})),
            )

    def as_error_handler(
        self, **extra: Any
    ) -> Callable[[BaseException, QueueItem[T]], Awaitable[None]]:
        """``on_error`` callback for RetryQueue that persists the dead item."""

        async def handler(error: BaseException, item: QueueItem[T]) -> None:
            await self.save([item.payload], error, {**describe(item), **extra})

        return handler
