"""
Tests for the kombu-backed queue transport.

Runs against kombu's in-memory broker; every test uses fresh queue and
exchange names because the memory broker's state is process-wide.
"""
import asyncio
import uuid

import pytest
import pytest_asyncio
from amqp.exceptions import MessageNacked

from relay.core.exceptions import TransportException
from relay.core.rabbitmq import QueueTransport


def unique(prefix: str) -> str:
    return f"{prefix}.{uuid.uuid4().hex[:8]}"


@pytest_asyncio.fixture
async def queue_transport():
    transport = QueueTransport("memory://", poll_interval=0.05, publish_max_retries=2)
    yield transport
    await transport.close()


async def wait_for(predicate, timeout: float = 5.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.02)


class TestConnection:
    """Connection lifecycle"""

    async def test_connect_is_idempotent(self, queue_transport):
        """Concurrent connects share one channel"""
        channels = await asyncio.gather(*(queue_transport.connect() for _ in range(5)))

        assert queue_transport.is_connected
        assert all(channel is channels[0] for channel in channels)

    async def test_close_without_connecting(self):
        """Closing a transport that never connected is a no-op"""
        transport = QueueTransport("memory://")

        await transport.close()

        assert not transport.is_connected

    async def test_declarations_are_idempotent(self, queue_transport):
        name = unique("relay.test.queue")

        await queue_transport.declare_queue(name)
        await queue_transport.declare_queue(name)
        await queue_transport.declare_exchange(unique("relay.test.exchange"), "topic")

    async def test_unsupported_exchange_type(self, queue_transport):
        with pytest.raises(ValueError):
            await queue_transport.declare_exchange(unique("relay.test.exchange"), "fanout")


class TestPublishConsume:
    """Publishing and the prefetch-1 consume loop"""

    async def test_payload_round_trip(self, queue_transport):
        """A structured payload arrives exactly as it was published"""
        name = unique("relay.test.queue")
        payload = {
            "version": 1,
            "deviceId": 42,
            "title": "Héllo",
            "body": "Ünïcode body",
            "data": {"orderId": 1042, "tags": ["a", "b"], "flag": True, "none": None, "ratio": 1.5},
        }
        received = []

        async def handler(message):
            received.append(message)

        await queue_transport.declare_queue(name)
        await queue_transport.consume(name, handler)
        assert await queue_transport.publish(name, payload) is True

        await wait_for(lambda: len(received) == 1)
        assert received[0] == payload

    async def test_messages_processed_in_order(self, queue_transport):
        name = unique("relay.test.queue")
        received = []

        async def handler(message):
            received.append(message["n"])

        await queue_transport.declare_queue(name)
        for n in range(5):
            await queue_transport.publish(name, {"n": n})
        await queue_transport.consume(name, handler)

        await wait_for(lambda: len(received) == 5)
        assert received == [0, 1, 2, 3, 4]

    async def test_failed_handler_rejects_without_requeue(self, queue_transport):
        """A message whose handler raises is dropped, not redelivered"""
        name = unique("relay.test.queue")
        calls = []

        async def handler(message):
            calls.append(message["n"])
            if message["n"] == 1:
                raise RuntimeError("poison message")

        await queue_transport.declare_queue(name)
        await queue_transport.consume(name, handler)
        await queue_transport.publish(name, {"n": 1})
        await queue_transport.publish(name, {"n": 2})

        await wait_for(lambda: 2 in calls)
        await asyncio.sleep(0.2)
        assert calls == [1, 2]

    async def test_non_object_body_is_rejected(self, queue_transport):
        """Bodies that are not JSON objects never reach the handler"""
        name = unique("relay.test.queue")
        received = []

        async def handler(message):
            received.append(message)

        await queue_transport.declare_queue(name)
        await queue_transport.consume(name, handler)
        await queue_transport.publish(name, ["not", "an", "object"])
        await queue_transport.publish(name, {"ok": True})

        await wait_for(lambda: len(received) == 1)
        assert received == [{"ok": True}]

    async def test_topic_exchange_routing(self, queue_transport):
        """A queue bound with a wildcard key receives matching events only"""
        exchange = unique("relay.test.done")
        received = []

        async def handler(message):
            received.append(message)

        await queue_transport.declare_exchange(exchange, "topic")
        await queue_transport.consume(exchange, handler, routing_key="notification.done.#")
        await queue_transport.publish(exchange, {"status": "sent"}, routing_key="notification.done.sent")
        await queue_transport.publish(exchange, {"status": "other"}, routing_key="audit.sent")

        await wait_for(lambda: len(received) == 1)
        await asyncio.sleep(0.2)
        assert received == [{"status": "sent"}]

    async def test_consume_twice_is_an_error(self, queue_transport):
        name = unique("relay.test.queue")

        async def handler(message):
            pass

        await queue_transport.consume(name, handler)
        with pytest.raises(RuntimeError):
            await queue_transport.consume(name, handler)

    async def test_cancel_waits_for_in_flight_handler(self, queue_transport):
        name = unique("relay.test.queue")
        started = asyncio.Event()
        finished = []

        async def handler(message):
            started.set()
            await asyncio.sleep(0.2)
            finished.append(message["n"])

        await queue_transport.consume(name, handler)
        await queue_transport.publish(name, {"n": 1})
        await asyncio.wait_for(started.wait(), timeout=5)

        await queue_transport.cancel()

        assert finished == [1]
        assert not queue_transport.is_consuming


class TestPublishFailures:
    """Broker rejections and connection errors"""

    async def test_nacked_publish_returns_false(self, queue_transport, monkeypatch):
        def nacked(*args, **kwargs):
            raise MessageNacked()

        await queue_transport.connect()
        monkeypatch.setattr(queue_transport, "_publish_sync", nacked)

        assert await queue_transport.publish(unique("relay.test.queue"), {"n": 1}) is False

    async def test_retries_then_raises(self, queue_transport, monkeypatch):
        """Connection errors reconnect and retry, then surface as TransportException"""
        attempts = []

        def broken(*args, **kwargs):
            attempts.append(1)
            raise ConnectionResetError("connection reset by peer")

        monkeypatch.setattr(queue_transport, "_publish_sync", broken)

        with pytest.raises(TransportException) as exc_info:
            await queue_transport.publish(unique("relay.test.queue"), {"n": 1})

        assert exc_info.value.status_code == 503
        assert len(attempts) == 3

    async def test_recovers_after_transient_error(self, queue_transport, monkeypatch):
        name = unique("relay.test.queue")
        real_publish = queue_transport._publish_sync
        attempts = []

        def flaky(*args, **kwargs):
            attempts.append(1)
            if len(attempts) == 1:
                raise ConnectionResetError("connection reset by peer")
            return real_publish(*args, **kwargs)

        received = []

        async def handler(message):
            received.append(message)

        monkeypatch.setattr(queue_transport, "_publish_sync", flaky)
        await queue_transport.declare_queue(name)

        assert await queue_transport.publish(name, {"n": 1}) is True
        assert len(attempts) == 2

        await queue_transport.consume(name, handler)
        await wait_for(lambda: received == [{"n": 1}])
