# tests/test_infrastructure.py
import asyncio
import json

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from marketplace.core.config import settings
from marketplace.infrastructure import realtime
from marketplace.infrastructure.realtime import (
    InProcessRealtimeBus,
    RedisRealtimeBus,
    channels_for,
    create_realtime_bus,
)
from marketplace.infrastructure.state_manager import SessionStore
from marketplace.interfaces.IRealtimeBus import channel_name

pytestmark = pytest.mark.asyncio

_real_sleep = asyncio.sleep


async def test_session_upsert_merges_fields():
    store = SessionStore(None)
    store.upsert_session("+5491122223333", in_vendor_chat=True, assigned_vendor_phone="+5491100000001")
    session = store.upsert_session("+5491122223333", previous_state="RATING_ORDER")

    assert session.in_vendor_chat is True
    assert session.assigned_vendor_phone == "+5491100000001"
    assert session.previous_state == "RATING_ORDER"
    assert session.updated_at is not None


async def test_preferences_default_until_set():
    store = SessionStore(None)
    assert store.get_preference("vendor:v1", "notification_sound", True) is True
    store.set_preference("vendor:v1", "notification_sound", False)
    assert store.get_preference("vendor:v1", "notification_sound", True) is False


async def test_channels_cover_every_filter_column():
    row = {"id": "o1", "vendor_id": "v1", "status": "ready"}
    assert channels_for("orders", row) == [
        "realtime:orders",
        "realtime:orders:vendor_id=eq.v1",
        "realtime:orders:status=eq.ready",
    ]
    assert channel_name("messages", "order_id", "o1") == "realtime:messages:order_id=eq.o1"


async def test_in_process_bus_routes_by_scope():
    bus = InProcessRealtimeBus()
    everything, mine = [], []
    bus.subscribe("orders", everything.append)
    sub = bus.subscribe("orders", mine.append, "vendor_id", "v1")

    await bus.publish("orders", {"id": "o1", "vendor_id": "v1"}, "INSERT")
    await bus.publish("orders", {"id": "o2", "vendor_id": "v2"}, "INSERT")

    assert [e.new["id"] for e in everything] == ["o1", "o2"]
    assert [e.new["id"] for e in mine] == ["o1"]

    sub.close()
    sub.close()
    assert sub.closed
    assert bus.subscriber_count() == 1


async def test_broken_handler_does_not_block_others():
    bus = InProcessRealtimeBus()
    received = []

    def broken(event):
        raise RuntimeError("boom")

    bus.subscribe("messages", broken, "order_id", "o1")
    bus.subscribe("messages", received.append, "order_id", "o1")
    await bus.publish("messages", {"id": "m1", "order_id": "o1"}, "INSERT")

    assert len(received) == 1


async def test_bus_without_redis_is_in_process():
    bus = await create_realtime_bus(None)
    assert isinstance(bus, InProcessRealtimeBus)


# ---------------------------------------------------------
# REDIS TRANSPORT
# ---------------------------------------------------------
class StubPubSub:
    """Scripted pubsub: fail on subscribe, or yield messages then drop or wait for more."""

    def __init__(self, fail_subscribe=False, messages=(), drop_after=False):
        self.fail_subscribe = fail_subscribe
        self.messages = list(messages)
        self.drop_after = drop_after
        self.queue: asyncio.Queue = asyncio.Queue()
        self.channels = []
        self.closed = False

    async def subscribe(self, channel):
        if self.fail_subscribe:
            raise RedisConnectionError("redis down")
        self.channels.append(channel)

    async def listen(self):
        yield {"type": "subscribe", "data": 1}
        for message in self.messages:
            yield message
        if self.drop_after:
            raise RedisConnectionError("connection reset")
        while True:
            yield await self.queue.get()

    async def unsubscribe(self):
        pass

    async def aclose(self):
        self.closed = True


class StubRedis:
    def __init__(self, sessions=(), ping_ok=True, publish_ok=True):
        self.sessions = list(sessions)
        self.ping_ok = ping_ok
        self.publish_ok = publish_ok
        self.published = []

    def pubsub(self):
        # The last scripted session repeats
        return self.sessions.pop(0) if len(self.sessions) > 1 else self.sessions[0]

    async def publish(self, channel, payload):
        if not self.publish_ok:
            raise RedisConnectionError("redis down")
        self.published.append((channel, payload))

    async def ping(self):
        if not self.ping_ok:
            raise RedisConnectionError("redis down")
        return True

    async def aclose(self):
        pass


def _wire(row, event_type="INSERT", table="orders"):
    return {"type": "message", "data": json.dumps({"table": table, "type": event_type, "new": row})}


async def _until(condition, rounds=200):
    for _ in range(rounds):
        if condition():
            return
        await _real_sleep(0)
    raise AssertionError("condition not reached")


@pytest.fixture
def delays(monkeypatch):
    recorded = []

    async def fake_sleep(delay):
        recorded.append(delay)
        await _real_sleep(0)

    monkeypatch.setattr(realtime.asyncio, "sleep", fake_sleep)
    monkeypatch.setattr(settings, "REALTIME_RECONNECT_BASE_DELAY", 1.0)
    monkeypatch.setattr(settings, "REALTIME_RECONNECT_MAX_DELAY", 3.0)
    monkeypatch.setattr(settings, "REALTIME_MAX_RECONNECT_ATTEMPTS", 3)
    return recorded


async def test_redis_publish_fans_out_to_scoped_channels():
    client = StubRedis()
    bus = RedisRealtimeBus(client)

    await bus.publish("messages", {"id": "m1", "order_id": "o1"}, "INSERT")

    assert [channel for channel, _ in client.published] == [
        "realtime:messages",
        "realtime:messages:order_id=eq.o1",
    ]
    assert json.loads(client.published[0][1])["new"]["id"] == "m1"


async def test_redis_publish_failure_is_logged_not_raised():
    bus = RedisRealtimeBus(StubRedis(publish_ok=False))
    await bus.publish("orders", {"id": "o1", "vendor_id": "v1"})


async def test_redis_backoff_is_capped_and_gives_up(delays):
    pubsub = StubPubSub(fail_subscribe=True)
    bus = RedisRealtimeBus(StubRedis([pubsub]))
    reconnects = []

    sub = bus.subscribe("orders", lambda e: None, "vendor_id", "v1", on_reconnect=lambda: reconnects.append(1))
    await _until(sub._task.done)

    assert delays == [1.0, 2.0, 3.0]
    assert sub.closed
    assert reconnects == []
    assert pubsub.closed


async def test_redis_resubscribes_and_fires_reconnect(delays):
    first = StubPubSub(messages=[_wire({"id": "o1", "vendor_id": "v1"})], drop_after=True)
    second = StubPubSub(messages=[_wire({"id": "o2", "vendor_id": "v1"}, "UPDATE")])
    bus = RedisRealtimeBus(StubRedis([first, second]))
    received, reconnects = [], []

    sub = bus.subscribe("orders", received.append, "vendor_id", "v1", on_reconnect=lambda: reconnects.append(1))
    await _until(lambda: len(received) == 2)

    assert [e.new["id"] for e in received] == ["o1", "o2"]
    assert [e.type for e in received] == ["INSERT", "UPDATE"]
    assert reconnects == [1]
    assert delays == [1.0]
    assert second.channels == ["realtime:orders:vendor_id=eq.v1"]

    sub.close()
    await asyncio.gather(sub._task, return_exceptions=True)
    second.queue.put_nowait(_wire({"id": "o3", "vendor_id": "v1"}))
    await _real_sleep(0)

    assert len(received) == 2
    assert second.closed


async def test_redis_drops_malformed_payloads(delays):
    pubsub = StubPubSub(messages=[
        {"type": "message", "data": "not json"},
        {"type": "message", "data": json.dumps({"table": "orders", "type": "DELETE", "new": {}})},
        _wire({"id": "o1", "vendor_id": "v1"}),
    ])
    bus = RedisRealtimeBus(StubRedis([pubsub]))
    received = []

    sub = bus.subscribe("orders", received.append, "vendor_id", "v1")
    await _until(lambda: len(received) == 1)
    sub.close()
    await asyncio.gather(sub._task, return_exceptions=True)

    assert [e.new["id"] for e in received] == ["o1"]


async def test_bus_falls_back_when_redis_ping_fails(monkeypatch):
    monkeypatch.setattr(RedisRealtimeBus, "from_url", classmethod(lambda cls, url: cls(StubRedis(ping_ok=False))))
    bus = await create_realtime_bus("redis://localhost:6379/0")
    assert isinstance(bus, InProcessRealtimeBus)


async def test_bus_uses_redis_when_reachable(monkeypatch):
    monkeypatch.setattr(RedisRealtimeBus, "from_url", classmethod(lambda cls, url: cls(StubRedis())))
    bus = await create_realtime_bus("redis://localhost:6379/0")
    assert isinstance(bus, RedisRealtimeBus)
