"""Per-session mutual exclusion for read-modify-write operations."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict


class SessionLocks:
    """Registry of one ``asyncio.Lock`` per session id.

    Mutations of the same session are serialized; different sessions proceed
    in parallel. A single registry is shared by every component that writes
    session-keyed records so that, for example, a progress update and a
    checkpoint for the same session never interleave.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    @asynccontextmanager
    async def hold(self, session_id: str) -> AsyncIterator[None]:
        async with self._locks[session_id]:
            yield

    def discard(self, session_id: str) -> None:
        lock = self._locks.get(session_id)
        if lock is not None and not lock.locked():
            del self._locks[session_id]

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._locks
