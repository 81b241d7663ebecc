"""Queue interface shared by the enrichment worker and the event channel."""

from __future__ import annotations

import abc
from typing import AsyncIterator, Generic, Optional, Tuple, TypeVar

from ..contracts import QueueMessage

RawMessageT = TypeVar("RawMessageT")


class BaseTransport(Generic[RawMessageT], metaclass=abc.ABCMeta):
    """A named-topic FIFO of ``QueueMessage`` envelopes.

    ``subscribe`` yields the backend's raw handle next to the parsed message;
    consumers hand the raw handle back to ``ack`` or ``nack`` once the message
    has been dealt with. Transports can be used as async context managers.
    """

    async def connect(self) -> None:
        pass

    async def disconnect(self) -> None:
        pass

    async def __aenter__(self) -> "BaseTransport[RawMessageT]":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.disconnect()

    @abc.abstractmethod
    async def publish(self, topic: str, message: QueueMessage) -> None:
        """Append ``message`` to ``topic``."""
        raise NotImplementedError

    @abc.abstractmethod
    def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[RawMessageT, QueueMessage]]:
        """Yield ``(raw, message)`` pairs from ``topic`` in publish order.

        Args:
            topic: Queue to consume.
            lifespan: Seconds after which the iterator stops; ``None`` runs
                until the consumer breaks out.
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def ack(self, raw_message: RawMessageT) -> None:
        """Mark the message as handled."""
        raise NotImplementedError

    @abc.abstractmethod
    async def nack(self, raw_message: RawMessageT, requeue: bool = True) -> None:
        """Reject the message; with ``requeue`` it is the next one delivered."""
        raise NotImplementedError
