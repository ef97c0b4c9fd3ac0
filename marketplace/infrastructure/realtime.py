import asyncio
import json
import logging
from collections import defaultdict
from typing import Any, Dict, List, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from marketplace.core.config import settings
from marketplace.domain.schemas import ChangeEvent
from marketplace.interfaces.IRealtimeBus import (
    FILTER_COLUMNS,
    EventCallback,
    IRealtimeBus,
    ReconnectCallback,
    Subscription,
    channel_name,
)

logger = logging.getLogger(__name__)


def channels_for(table: str, row: Dict[str, Any]) -> List[str]:
    """Global channel of the table plus one channel per indexed column present in the row."""
    channels = [channel_name(table)]
    for column in FILTER_COLUMNS.get(table, ()):
        value = row.get(column)
        if value is not None:
            channels.append(channel_name(table, column, value))
    return channels


def _dispatch(callback: EventCallback, event: ChangeEvent, channel: str):
    try:
        callback(event)
    except Exception:
        # One broken handler must not starve the others on the channel
        logger.exception(f"❌ Realtime handler failed on {channel}")


# ---------------------------------------------------------
# IN-PROCESS TRANSPORT (RAM fallback, tests)
# ---------------------------------------------------------
class _LocalSubscription(Subscription):
    def __init__(self, bus: "InProcessRealtimeBus", channel: str, callback: EventCallback):
        self.bus = bus
        self.channel = channel
        self.callback = callback
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.bus._detach(self)

    def deliver(self, event: ChangeEvent):
        if not self._closed:
            _dispatch(self.callback, event, self.channel)


class InProcessRealtimeBus(IRealtimeBus):
    def __init__(self):
        self._subscribers: Dict[str, List[_LocalSubscription]] = defaultdict(list)

    async def publish(self, table: str, row: Dict[str, Any], event_type: str = "UPDATE") -> None:
        event = ChangeEvent(table=table, type=event_type, new=row)
        for channel in channels_for(table, row):
            for subscription in list(self._subscribers.get(channel, [])):
                subscription.deliver(event)

    def subscribe(
        self,
        table: str,
        callback: EventCallback,
        filter_column: Optional[str] = None,
        filter_value: Any = None,
        on_reconnect: Optional[ReconnectCallback] = None,
    ) -> Subscription:
        channel = channel_name(table, filter_column, filter_value)
        subscription = _LocalSubscription(self, channel, callback)
        self._subscribers[channel].append(subscription)
        logger.debug(f"📡 Subscribed to {channel}")
        return subscription

    def subscriber_count(self, channel: Optional[str] = None) -> int:
        if channel is not None:
            return len(self._subscribers.get(channel, []))
        return sum(len(subs) for subs in self._subscribers.values())

    def _detach(self, subscription: _LocalSubscription):
        subs = self._subscribers.get(subscription.channel, [])
        if subscription in subs:
            subs.remove(subscription)
        if not subs:
            self._subscribers.pop(subscription.channel, None)
        logger.debug(f"📴 Unsubscribed from {subscription.channel}")


# ---------------------------------------------------------
# REDIS TRANSPORT
# ---------------------------------------------------------
class _RedisSubscription(Subscription):
    """One pubsub connection per subscription, resubscribing with exponential backoff."""

    def __init__(self, bus: "RedisRealtimeBus", channel: str, callback: EventCallback,
                 on_reconnect: Optional[ReconnectCallback]):
        self.bus = bus
        self.channel = channel
        self.callback = callback
        self.on_reconnect = on_reconnect
        self._closed = False
        self._task = asyncio.get_running_loop().create_task(self._listen())

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._task.cancel()

    async def _listen(self):
        failures = 0
        dropped = False
        while not self._closed:
            pubsub = self.bus.redis.pubsub()
            try:
                await pubsub.subscribe(self.channel)
                if dropped:
                    logger.info(f"🔄 Resubscribed to {self.channel} after {failures} failed attempt(s)")
                    dropped = False
                    if self.on_reconnect and not self._closed:
                        self.on_reconnect()
                failures = 0

                async for message in pubsub.listen():
                    if self._closed:
                        break
                    if message.get("type") != "message":
                        continue
                    self._deliver(message["data"])
                else:
                    # Stream ended without error: the connection went away
                    dropped = True
            except RedisError as e:
                dropped = True
                failures += 1
                if failures > settings.REALTIME_MAX_RECONNECT_ATTEMPTS:
                    logger.error(f"❌ Giving up on {self.channel} after {failures - 1} reconnect attempts: {e}")
                    self._closed = True
                    return
                delay = min(
                    settings.REALTIME_RECONNECT_BASE_DELAY * (2 ** (failures - 1)),
                    settings.REALTIME_RECONNECT_MAX_DELAY,
                )
                logger.warning(f"⚠️ Realtime channel {self.channel} dropped ({e}). Retrying in {delay:.1f}s")
                await asyncio.sleep(delay)
            finally:
                await self._release(pubsub)

    def _deliver(self, raw: str):
        if self._closed:
            return
        try:
            event = ChangeEvent.model_validate(json.loads(raw))
        except ValueError as e:
            logger.error(f"❌ Malformed realtime payload on {self.channel}: {e}")
            return
        _dispatch(self.callback, event, self.channel)

    async def _release(self, pubsub):
        try:
            await pubsub.unsubscribe()
            await pubsub.aclose()
        except RedisError as e:
            logger.debug(f"Pubsub cleanup for {self.channel} failed: {e}")


class RedisRealtimeBus(IRealtimeBus):
    def __init__(self, client: aioredis.Redis):
        self.redis = client

    @classmethod
    def from_url(cls, redis_url: str) -> "RedisRealtimeBus":
        return cls(aioredis.from_url(redis_url, decode_responses=True))

    async def publish(self, table: str, row: Dict[str, Any], event_type: str = "UPDATE") -> None:
        payload = ChangeEvent(table=table, type=event_type, new=row).model_dump_json()
        for channel in channels_for(table, row):
            try:
                await self.redis.publish(channel, payload)
            except RedisError as e:
                # The row is already committed; subscribers catch up on their next fetch
                logger.error(f"❌ Failed to publish {table} change on {channel}: {e}")

    def subscribe(
        self,
        table: str,
        callback: EventCallback,
        filter_column: Optional[str] = None,
        filter_value: Any = None,
        on_reconnect: Optional[ReconnectCallback] = None,
    ) -> Subscription:
        channel = channel_name(table, filter_column, filter_value)
        logger.debug(f"📡 Subscribing to {channel}")
        return _RedisSubscription(self, channel, callback, on_reconnect)

    async def close(self) -> None:
        await self.redis.aclose()


async def create_realtime_bus(redis_url: Optional[str]) -> IRealtimeBus:
    """Redis when reachable, otherwise the in-process bus."""
    if redis_url:
        bus = RedisRealtimeBus.from_url(redis_url)
        try:
            await bus.redis.ping()
            logger.info("✅ Realtime: using Redis pub/sub.")
            return bus
        except RedisError as e:
            logger.warning(f"⚠️ Realtime: Redis unreachable ({e}). Using in-process bus.")
            await bus.close()
    return InProcessRealtimeBus()
