from __future__ import annotations

from typing import Any, Awaitable, Callable, TypeVar, Union

T = TypeVar("T")
P = TypeVar("P")

# Zero-argument coroutine function: the unit of work being retried/guarded.
Operation = Callable[[], Awaitable[T]]

# Read function and predicate used by write-then-verify polling.
ReadFn = Callable[[], Awaitable[T]]
Predicate = Callable[[T], bool]

# Queue processing callable, receives the item payload.
ProcessFn = Callable[[P], Awaitable[Any]]

# Hooks may be plain functions or coroutine functions.
Hook = Callable[[], Union[None, Awaitable[None]]]
ErrorHook = Callable[[BaseException, Any], Union[None, Awaitable[None]]]

Classifier = Callable[[BaseException], bool]
