import asyncio

import pytest

from prospectflow.events import EventDispatcher, event_topic
from prospectflow.models import WorkflowEvent, WorkflowEventType
from prospectflow.transports.inmemory import InMemoryTransport


def _event(session_id="s1"):
    return WorkflowEvent(type=WorkflowEventType.SESSION_UPDATED, session_id=session_id)


@pytest.mark.asyncio
async def test_failing_listener_does_not_stop_others():
    dispatcher = EventDispatcher()
    seen = []

    def broken(event):
        raise RuntimeError("listener bug")

    dispatcher.add_listener("s1", broken)
    dispatcher.add_listener("s1", seen.append)

    await dispatcher.emit(_event())
    assert len(seen) == 1


@pytest.mark.asyncio
async def test_async_listener_runs_in_background():
    dispatcher = EventDispatcher()
    release = asyncio.Event()
    seen = []

    async def slow(event):
        await release.wait()
        seen.append(event)

    async def broken(event):
        raise RuntimeError("async listener bug")

    dispatcher.add_listener("s1", slow)
    dispatcher.add_listener("s1", broken)

    await dispatcher.emit(_event())
    assert seen == []

    release.set()
    await dispatcher.drain()
    assert len(seen) == 1


@pytest.mark.asyncio
async def test_listeners_are_scoped_per_session():
    dispatcher = EventDispatcher()
    seen = []
    dispatcher.add_listener("s1", seen.append)

    await dispatcher.emit(_event("s2"))
    assert seen == []

    assert dispatcher.remove_listener("s1", seen.append) is True
    assert dispatcher.remove_listener("s1", seen.append) is False
    assert dispatcher.listener_count("s1") == 0


@pytest.mark.asyncio
async def test_events_forwarded_to_transport():
    transport = InMemoryTransport(poll_interval=0.01)
    dispatcher = EventDispatcher(transport)

    await dispatcher.emit(_event())
    assert transport.pending(event_topic("s1")) == 1

    async for raw, message in transport.subscribe(event_topic("s1")):
        assert message.kind == "workflow_event"
        assert message.payload["type"] == "session_updated"
        await transport.ack(raw)
        break
