"""In-memory transport for tests and single-process deployments."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict, deque
from typing import AsyncIterator, Deque, Dict, Optional, Tuple

from ..contracts import QueueMessage
from .base import BaseTransport

logger = logging.getLogger(__name__)

# (topic, serialized message)
InMemoryRaw = Tuple[str, str]


class InMemoryTransport(BaseTransport[InMemoryRaw]):
    """Per-topic deques guarded by one lock.

    Messages are stored serialized so that every consumer parses its own copy.
    """

    def __init__(self, poll_interval: float = 0.1) -> None:
        self._queues: Dict[str, Deque[str]] = defaultdict(deque)
        self._lock = asyncio.Lock()
        self._poll_interval = poll_interval

    async def publish(self, topic: str, message: QueueMessage) -> None:
        async with self._lock:
            self._queues[topic].append(message.to_json())

    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[InMemoryRaw, QueueMessage]]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + lifespan if lifespan is not None else None

        while deadline is None or loop.time() < deadline:
            async with self._lock:
                payload = self._queues[topic].popleft() if self._queues[topic] else None
            if payload is None:
                await asyncio.sleep(self._poll_interval)
                continue
            yield (topic, payload), QueueMessage.from_json(payload)

    async def ack(self, raw_message: InMemoryRaw) -> None:
        pass

    async def nack(self, raw_message: InMemoryRaw, requeue: bool = True) -> None:
        topic, payload = raw_message
        if not requeue:
            logger.warning(f"Dropped rejected message on {topic}")
            return
        async with self._lock:
            self._queues[topic].appendleft(payload)

    def pending(self, topic: str) -> int:
        return len(self._queues[topic])
