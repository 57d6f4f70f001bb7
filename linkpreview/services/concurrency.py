"""Order-preserving async map with a fixed number of workers."""

import asyncio
from typing import Awaitable, Callable, Sequence, TypeVar

T = TypeVar("T")
R = TypeVar("R")


async def map_with_concurrency(
    items: Sequence[T],
    concurrency: int,
    mapper: Callable[[T], Awaitable[R]],
) -> list[R]:
    """Run ``mapper`` over ``items`` with at most ``concurrency`` calls in flight.

    A fixed set of workers pulls the next index from a shared counter, so
    fan-out stays bounded no matter how long the input is. Results keep the
    input order. Cancelling the caller cancels every worker.
    """
    if not items:
        return []

    size = max(1, int(concurrency or 1))
    results: list[R] = [None] * len(items)  # type: ignore[list-item]
    next_index = 0

    async def worker() -> None:
        nonlocal next_index
        while next_index < len(items):
            current = next_index
            next_index += 1
            results[current] = await mapper(items[current])

    await asyncio.gather(*(worker() for _ in range(min(size, len(items)))))
    return results
