"""Workflow event fan-out to in-process listeners and an optional channel."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

from .constants import EVENT_TOPIC_PREFIX
from .contracts import QueueMessage
from .models import WorkflowEvent
from .transports import BaseTransport

logger = logging.getLogger(__name__)

EventListener = Callable[[WorkflowEvent], Union[None, Awaitable[None]]]


def event_topic(session_id: str) -> str:
    return f"{EVENT_TOPIC_PREFIX}:{session_id}"


class EventDispatcher:
    """Per-session listener registry.

    Plain callables run inline; coroutine listeners are scheduled as tasks so a
    slow observer cannot hold up progress recording. Listener exceptions are
    logged and never propagate to the emitter. When a transport is supplied
    every event is also published to ``workflow-events:<session_id>``.
    """

    def __init__(self, transport: Optional[BaseTransport] = None) -> None:
        self._listeners: Dict[str, List[EventListener]] = defaultdict(list)
        self._transport = transport
        self._pending: Set[asyncio.Task[Any]] = set()

    def add_listener(self, session_id: str, listener: EventListener) -> None:
        self._listeners[session_id].append(listener)

    def remove_listener(self, session_id: str, listener: EventListener) -> bool:
        listeners = self._listeners.get(session_id)
        if not listeners or listener not in listeners:
            return False
        listeners.remove(listener)
        if not listeners:
            del self._listeners[session_id]
        return True

    def clear(self, session_id: str) -> None:
        self._listeners.pop(session_id, None)

    def listener_count(self, session_id: str) -> int:
        return len(self._listeners.get(session_id, []))

    async def emit(self, event: WorkflowEvent) -> None:
        for listener in list(self._listeners.get(event.session_id, [])):
            try:
                result = listener(event)
            except Exception as exc:
                logger.warning(
                    f"Error in workflow event listener for session {event.session_id}: {exc}"
                )
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._pending.add(task)
                task.add_done_callback(self._on_listener_done)

        if self._transport is not None:
            try:
                await self._transport.publish(
                    event_topic(event.session_id),
                    QueueMessage(kind="workflow_event", payload=event.model_dump(mode="json")),
                )
            except Exception as exc:
                logger.warning(
                    f"Failed to forward {event.type.value} event for session {event.session_id}: {exc}"
                )

    async def drain(self) -> None:
        """Wait for scheduled coroutine listeners to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _on_listener_done(self, task: asyncio.Task[Any]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(f"Error in async workflow event listener: {exc}")
