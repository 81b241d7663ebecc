"""Redis transport for cross-process job and event queues."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Optional, Tuple

import redis.asyncio as redis
from pydantic import ValidationError

from ..contracts import QueueMessage
from .base import BaseTransport

logger = logging.getLogger(__name__)

# (queue key, serialized message)
RedisRaw = Tuple[str, str]


class RedisTransport(BaseTransport[RedisRaw]):
    """Each topic is a Redis list: producers ``LPUSH``, workers ``BRPOP``.

    A popped message is already gone from the list, so ``ack`` has nothing to
    do and ``nack(requeue=True)`` pushes it back onto the consuming end.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        prefix: str = "prospectflow",
        block_timeout: int = 1,
    ) -> None:
        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self.prefix = prefix
        self.block_timeout = block_timeout
        self._redis: Optional[Any] = None

    def _queue_name(self, topic: str) -> str:
        return f"{self.prefix}:{topic}"

    async def connect(self) -> None:
        if self._redis is not None:
            return
        self._redis = redis.Redis(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            decode_responses=True,
        )
        await self._redis.ping()
        logger.info(f"Connected to Redis at {self.host}:{self.port}/{self.db}")

    async def disconnect(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

    async def publish(self, topic: str, message: QueueMessage) -> None:
        await self.connect()
        await self._redis.lpush(self._queue_name(topic), message.to_json())

    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[RedisRaw, QueueMessage]]:
        await self.connect()
        queue_name = self._queue_name(topic)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + lifespan if lifespan is not None else None

        while deadline is None or loop.time() < deadline:
            result = await self._redis.brpop(queue_name, timeout=self.block_timeout)
            if not result:
                continue
            _, payload = result
            try:
                message = QueueMessage.from_json(payload)
            except ValidationError as e:
                logger.error(f"Dropping unparseable message on {queue_name}: {e}")
                continue
            yield (queue_name, payload), message

    async def ack(self, raw_message: RedisRaw) -> None:
        pass

    async def nack(self, raw_message: RedisRaw, requeue: bool = True) -> None:
        queue_name, payload = raw_message
        if not requeue:
            logger.warning(f"Dropped rejected message on {queue_name}")
            return
        await self.connect()
        await self._redis.rpush(queue_name, payload)
