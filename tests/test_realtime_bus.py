"""
Tests for the Redis pub/sub feed, using an in-memory pub/sub double.
"""

import asyncio

from redis.exceptions import ConnectionError as RedisConnectionError
from structlog.testing import capture_logs

from chatnotify.utils.config import SessionConfig
from chatnotify.utils.realtime_bus import NoopBus, RedisBus, get_bus
from tests.factories import FakePubSub, FakeRedis


class TestRedisSubscription:

    async def test_forwards_decoded_messages(self):
        pubsub = FakePubSub([
            {"type": "subscribe", "data": 1},
            {"type": "message", "data": b'{"type": "NOTIFICATIONS_CLEARED", "chatId": "c1"}'},
            {"type": "message", "data": "plain text"},
        ])
        bus = RedisBus(client=FakeRedis(pubsub))
        received = []

        async def on_message(data):
            received.append(data)
            if len(received) == 2:
                await subscription.cancel()

        subscription = await bus.subscribe("user:me", on_message)
        await asyncio.wait_for(subscription.run(), timeout=2)

        assert received == ['{"type": "NOTIFICATIONS_CLEARED", "chatId": "c1"}', "plain text"]
        assert pubsub.subscribed == ["user:me"]
        assert pubsub.unsubscribed == ["user:me"]
        assert pubsub.closed

    async def test_keeps_running_after_receive_error(self):
        pubsub = FakePubSub([RedisConnectionError("reset by peer"), {"type": "message", "data": "after"}])
        bus = RedisBus(client=FakeRedis(pubsub))
        received = []

        async def on_message(data):
            received.append(data)
            await subscription.cancel()

        subscription = await bus.subscribe("user:me", on_message)
        await asyncio.wait_for(subscription.run(), timeout=3)

        assert received == ["after"]
        assert not subscription.running

    async def test_undecodable_payload_is_skipped(self):
        pubsub = FakePubSub([
            {"type": "message", "data": b"\xff\xfe bad"},
            {"type": "message", "data": "after"},
        ])
        bus = RedisBus(client=FakeRedis(pubsub))
        received = []

        async def on_message(data):
            received.append(data)
            await subscription.cancel()

        subscription = await bus.subscribe("user:me", on_message)
        with capture_logs() as logs:
            await asyncio.wait_for(subscription.run(), timeout=2)

        assert received == ["after"]
        assert any(entry["event"] == "bus_message_dropped" for entry in logs)

    async def test_handler_error_does_not_stop_feed(self):
        pubsub = FakePubSub([
            {"type": "message", "data": "first"},
            {"type": "message", "data": "second"},
        ])
        bus = RedisBus(client=FakeRedis(pubsub))
        received = []

        async def on_message(data):
            received.append(data)
            if data == "first":
                raise RuntimeError("handler bug")
            await subscription.cancel()

        subscription = await bus.subscribe("user:me", on_message)
        await asyncio.wait_for(subscription.run(), timeout=2)

        assert received == ["first", "second"]

    async def test_close_closes_client(self):
        client = FakeRedis(FakePubSub())
        bus = RedisBus(client=client)

        await bus.close()

        assert client.closed


class TestGetBus:

    def test_without_redis_url_uses_noop(self):
        bus = get_bus(SessionConfig(user_id="me"))

        assert isinstance(bus, NoopBus)
        assert bus.enabled is False

    async def test_with_redis_url_uses_redis(self):
        bus = get_bus(SessionConfig(user_id="me", redis_url="redis://localhost:6379/0"))

        assert isinstance(bus, RedisBus)
        assert bus.enabled is True
        await bus.close()
