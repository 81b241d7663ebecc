from __future__ import annotations

import asyncio
import random

from ..constants import DEFAULT_JOB_BACKOFF_BASE


def compute_backoff(
    attempt: int, base: float = DEFAULT_JOB_BACKOFF_BASE, jitter: float = 0.5
) -> float:
    """Exponential backoff in seconds: ``base * 2 ** (attempt - 1)`` plus jitter."""
    delay = base * 2 ** max(attempt - 1, 0)
    return delay + random.uniform(0, jitter)


async def wait_ms(delay_ms: int) -> None:
    """Sleep for ``delay_ms`` milliseconds."""
    await asyncio.sleep(delay_ms / 1000)
