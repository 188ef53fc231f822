"""Bounded-concurrency batch execution.

Items are split into fixed-size groups. Each group runs concurrently and
must fully settle before the next group starts, so at most ``batch_size``
workers are ever in flight. Results line up 1:1 with the input: a failed
item is replaced in place by ``on_error(item, exc)``, never dropped.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

T = TypeVar("T")
R = TypeVar("R")


def partition(items: Sequence[T], batch_size: int) -> list[Sequence[T]]:
    """Split ``items`` into consecutive groups of at most ``batch_size``."""
    if batch_size <= 0:
        msg = f"batch_size must be positive, got {batch_size}"
        raise ValueError(msg)
    return [items[i:i + batch_size] for i in range(0, len(items), batch_size)]


async def run_in_batches(
    items: Sequence[T],
    batch_size: int,
    worker: Callable[[T], Awaitable[R]],
    on_error: Callable[[T, Exception], R],
) -> list[R]:
    """Run ``worker`` over ``items`` in sequential concurrent batches.

    Args:
        items: Units of work, in submission order.
        batch_size: Maximum number of workers in flight.
        worker: Coroutine function producing one result per item.
        on_error: Builds the substitute result for an item whose worker raised.

    Returns:
        One result per item, in the order of ``items``.
    """
    results: list[R] = []
    for batch in partition(items, batch_size):
        outcomes = await asyncio.gather(
            *(worker(item) for item in batch), return_exceptions=True,
        )
        for item, outcome in zip(batch, outcomes):
            if isinstance(outcome, Exception):
                results.append(on_error(item, outcome))
            elif isinstance(outcome, BaseException):
                # Cancellation and interpreter exits are not per-item failures
                raise outcome
            else:
                results.append(outcome)
    return results
