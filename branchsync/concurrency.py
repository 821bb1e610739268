"""Bounded-concurrency async map with per-item failure isolation."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Generic, TypeVar

from branchsync.errors import OperationCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass(frozen=True)
class MapResult(Generic[R]):
    """Outcome of one item: either ``value`` or ``error`` is meaningful."""

    index: int
    value: R | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class CancelToken:
    """Cooperative cancellation flag passed through long-running work."""

    def __init__(self) -> None:
        self._cancelled = False
        self.reason = ""

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self, reason: str = "superseded") -> None:
        self._cancelled = True
        self.reason = reason

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise OperationCancelled(f"operation cancelled: {self.reason}", operation="map_limit")


async def map_limit(
    items: Iterable[T],
    limit: int,
    fn: Callable[[T], Awaitable[R]],
    *,
    cancel_token: CancelToken | None = None,
    timeout: float | None = None,
) -> list[MapResult[R]]:
    """Apply *fn* to every item with at most *limit* calls in flight.

    ``results[i]`` always corresponds to ``items[i]`` regardless of completion
    order. An exception from one item is captured in its MapResult and does
    not stop the others. With *timeout*, an item that takes longer fails with
    ``asyncio.TimeoutError`` and frees its slot. When *cancel_token* is
    cancelled, items that have not started are skipped and OperationCancelled
    is raised once the in-flight calls finish.
    """
    if limit < 1:
        raise ValueError(f"limit must be >= 1, got {limit}")
    pending = list(items)
    results: list[MapResult[R] | None] = [None] * len(pending)
    next_index = 0

    async def _call(index: int, item: T) -> MapResult[R]:
        try:
            if timeout is None:
                value = await fn(item)
            else:
                value = await asyncio.wait_for(fn(item), timeout)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.debug("map_limit item %d failed: %s", index, e)
            return MapResult(index=index, error=e)
        return MapResult(index=index, value=value)

    async def _worker() -> None:
        nonlocal next_index
        while next_index < len(pending):
            if cancel_token is not None and cancel_token.cancelled:
                return
            index = next_index
            next_index += 1
            results[index] = await _call(index, pending[index])

    workers = min(limit, len(pending))
    if workers:
        await asyncio.gather(*(_worker() for _ in range(workers)))

    if cancel_token is not None:
        cancel_token.raise_if_cancelled()
    return [r for r in results if r is not None]


def unwrap_results(results: list[MapResult[R]]) -> list[R]:
    """Return the plain values, re-raising the first captured error."""
    for result in results:
        if result.error is not None:
            raise result.error
    return [result.value for result in results]  # type: ignore[misc]
