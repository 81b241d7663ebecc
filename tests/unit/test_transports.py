"""Transport tests."""

import pytest

from prospectflow.contracts import EnrichmentJob, ProspectData, QueueMessage
from prospectflow.transports import get_transport
from prospectflow.transports.inmemory import InMemoryTransport
from prospectflow.transports.redis import RedisTransport


@pytest.mark.asyncio
async def test_inmemory_transport_basic():
    """Test basic InMemoryTransport publish/subscribe."""
    transport = InMemoryTransport()

    job = EnrichmentJob(
        prospect_id="p-1",
        user_id="user-1",
        prospect=ProspectData(name="Ada", company="Analytical Engines"),
    )
    await transport.publish("test_topic", job.to_message())

    message_received = False
    async for raw_msg, received_msg in transport.subscribe("test_topic"):
        assert received_msg.kind == "enrichment_job"
        assert EnrichmentJob.from_message(received_msg) == job

        await transport.ack(raw_msg)
        message_received = True
        break

    assert message_received
    assert transport.pending("test_topic") == 0


@pytest.mark.asyncio
async def test_inmemory_subscribe_stops_after_lifespan():
    transport = InMemoryTransport(poll_interval=0.01)
    received = [m async for _, m in transport.subscribe("empty", lifespan=0.05)]
    assert received == []


def test_bump_attempt_renews_message_id():
    message = QueueMessage(kind="enrichment_job", payload={"a": 1})
    retried = message.bump_attempt()
    assert retried.attempt == 2
    assert retried.message_id != message.message_id
    assert retried.payload == message.payload


def test_redis_transport_instantiation():
    transport = RedisTransport()
    assert transport.host == "localhost"
    assert transport.port == 6379
    assert transport._queue_name("jobs") == "prospectflow:jobs"


def test_get_transport_rejects_unknown_backend():
    with pytest.raises(ValueError):
        get_transport("carrier-pigeon")


@pytest.mark.asyncio
async def test_inmemory_nack_requeues_or_drops():
    transport = InMemoryTransport(poll_interval=0.01)
    await transport.publish("jobs", QueueMessage(kind="a"))
    await transport.publish("jobs", QueueMessage(kind="b"))

    async for raw, message in transport.subscribe("jobs"):
        assert message.kind == "a"
        await transport.nack(raw)
        break
    assert transport.pending("jobs") == 2

    kinds = []
    async for raw, message in transport.subscribe("jobs", lifespan=0.05):
        kinds.append(message.kind)
        await transport.nack(raw, requeue=False)
    assert kinds == ["a", "b"]
    assert transport.pending("jobs") == 0
