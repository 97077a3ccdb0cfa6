"""
Tests for Room Brokers

Unit tests for in-process delivery and the Redis pub/sub envelope.
"""

import asyncio
import json

import pytest
from unittest.mock import AsyncMock, MagicMock
from redis.exceptions import RedisError

from campool_chat.services.broker import LocalBroker, RedisBroker, RedisChannels
from campool_chat.services.room_registry import RoomRegistry

from conftest import FakeConnection, new_user_id


@pytest.fixture
def registry():
    return RoomRegistry()


@pytest.fixture
def members(registry):
    conns = [FakeConnection(new_user_id()) for _ in range(3)]
    for conn in conns:
        registry.add(conn, "ride-1")
    return conns


class TestLocalBroker:
    """Tests for LocalBroker."""

    def test_deliver_skips_excluded_connection(self, registry, members):
        broker = LocalBroker(registry)

        delivered = broker.deliver("ride-1", {"type": "typing"}, exclude=members[0].connection_id)

        assert delivered == 2
        assert members[0].events == []
        assert members[1].events == [{"type": "typing"}]

    def test_deliver_counts_only_live_connections(self, registry, members):
        members[2].closed = True

        assert LocalBroker(registry).deliver("ride-1", {"type": "x"}) == 2

    def test_deliver_to_empty_room(self, registry):
        assert LocalBroker(registry).deliver("nobody-here", {"type": "x"}) == 0

    @pytest.mark.asyncio
    async def test_publish_delivers_immediately(self, registry, members):
        await LocalBroker(registry).publish("ride-1", {"type": "x"})

        assert all(conn.events == [{"type": "x"}] for conn in members)


class TestRedisBroker:
    """Tests for RedisBroker."""

    @pytest.fixture
    def client(self):
        client = MagicMock()
        client.publish = AsyncMock(return_value=1)
        return client

    def test_channel_names(self):
        assert RedisChannels.room("abc") == "campool:chat:room:abc"
        assert RedisChannels.all_rooms() == "campool:chat:room:*"

    @pytest.mark.asyncio
    async def test_publish_sends_envelope_without_local_delivery(self, registry, members, client):
        """Local members get the event back through the subscription."""
        broker = RedisBroker(registry, client)

        await broker.publish("ride-1", {"type": "typing"}, exclude="conn-1")

        channel, payload = client.publish.call_args.args
        assert channel == "campool:chat:room:ride-1"
        assert json.loads(payload) == {
            "ride_id": "ride-1",
            "event": {"type": "typing"},
            "exclude": "conn-1",
        }
        assert all(conn.events == [] for conn in members)

    def test_handle_envelope_delivers_to_local_members(self, registry, members, client):
        broker = RedisBroker(registry, client)
        raw = json.dumps(
            {"ride_id": "ride-1", "event": {"type": "userLeft"}, "exclude": members[1].connection_id}
        )

        broker.handle_envelope(raw)

        assert [len(conn.events) for conn in members] == [1, 0, 1]

    @pytest.mark.parametrize("raw", ["not json", "{}", "[1, 2]"])
    def test_malformed_envelope_is_ignored(self, registry, members, client, raw):
        RedisBroker(registry, client).handle_envelope(raw)

        assert all(conn.events == [] for conn in members)

    @pytest.mark.asyncio
    async def test_publish_failure_is_logged_not_raised(self, registry, client):
        client.publish = AsyncMock(side_effect=RedisError("connection refused"))

        await RedisBroker(registry, client).publish("ride-1", {"type": "x"})

        client.publish.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stop_without_start(self, registry, client):
        broker = RedisBroker(registry, client)

        await broker.stop()

        assert broker._listener is None


class FakePubSub:
    """Pattern subscription that replays canned messages, then idles."""

    def __init__(self, messages=(), fail_subscribe=False):
        self.messages = list(messages)
        self.fail_subscribe = fail_subscribe
        self.patterns = []
        self.closed = False

    async def psubscribe(self, pattern):
        if self.fail_subscribe:
            raise RedisError("connection reset")
        self.patterns.append(pattern)

    async def listen(self):
        for message in self.messages:
            yield message
        await asyncio.Event().wait()

    async def aclose(self):
        self.closed = True


async def wait_for_events(conn, count=1):
    for _ in range(100):
        if len(conn.events) >= count:
            return
        await asyncio.sleep(0.01)


class TestRedisListener:
    """Tests for the RedisBroker subscription loop."""

    def envelope(self, event, exclude=None):
        return json.dumps({"ride_id": "ride-1", "event": event, "exclude": exclude})

    @pytest.mark.asyncio
    async def test_listener_delivers_pattern_messages(self, registry, members):
        pubsub = FakePubSub(
            [
                {"type": "psubscribe", "data": 1},
                {
                    "type": "pmessage",
                    "channel": "campool:chat:room:ride-1",
                    "data": self.envelope({"type": "typing"}, exclude=members[0].connection_id),
                },
            ]
        )
        client = MagicMock()
        client.pubsub = MagicMock(return_value=pubsub)
        broker = RedisBroker(registry, client)

        await broker.start()
        await wait_for_events(members[1])
        await broker.stop()

        assert pubsub.patterns == ["campool:chat:room:*"]
        assert members[0].events == []
        assert members[1].events == [{"type": "typing"}]
        assert members[2].events == [{"type": "typing"}]
        assert pubsub.closed is True

    @pytest.mark.asyncio
    async def test_listener_resubscribes_after_redis_error(self, registry, members):
        broken = FakePubSub(fail_subscribe=True)
        healthy = FakePubSub(
            [{"type": "pmessage", "data": self.envelope({"type": "userLeft"})}]
        )
        client = MagicMock()
        client.pubsub = MagicMock(side_effect=[broken, healthy])
        broker = RedisBroker(registry, client, reconnect_delay=0)

        await broker.start()
        await wait_for_events(members[0])
        await broker.stop()

        assert broken.closed is True
        assert healthy.patterns == ["campool:chat:room:*"]
        assert all(conn.events == [{"type": "userLeft"}] for conn in members)
