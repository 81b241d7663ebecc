"""Cooperative admission control for batch enrichment."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Sequence, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


async def run_batch(
    items: Sequence[T],
    runner: Callable[[T], Awaitable[R]],
    concurrency: int = 3,
    delay: float = 1.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> list[Union[R, BaseException]]:
    """Run ``runner`` over ``items`` in chunks of ``concurrency``.

    Within a chunk the item at position ``i`` starts after ``delay * i``
    seconds; chunks are separated by ``delay``. Results keep input order and
    exceptions are returned in place rather than raised.
    """
    if concurrency < 1:
        raise ValueError("concurrency must be at least 1")

    async def staggered(index: int, item: T) -> R:
        if index > 0:
            await sleep(delay * index)
        return await runner(item)

    results: list[Union[R, BaseException]] = []
    for start in range(0, len(items), concurrency):
        chunk = items[start : start + concurrency]
        results.extend(
            await asyncio.gather(
                *(staggered(i, item) for i, item in enumerate(chunk)),
                return_exceptions=True,
            )
        )
        if start + concurrency < len(items):
            await sleep(delay)

    failed = sum(1 for r in results if isinstance(r, BaseException))
    logger.info(f"Batch finished: {len(results) - failed} succeeded, {failed} failed")
    return results
