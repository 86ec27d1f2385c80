"""
In-process change feed for lobby and match records.

Operations publish a ChangeEvent after each committed write; interested
parties subscribe per record set (optionally narrowed to one foreign key,
e.g. all membership changes of one lobby) and consume events from the
subscription's queue or through a callback. A subscription with a callback
gets its events only through the callback. Cancelling the subscription is
the only way to stop delivery. When a Redis client is supplied every event
is mirrored onto pub/sub channels so other processes can follow along.
"""

import asyncio
import inspect
import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from redis.exceptions import RedisError
from sqlalchemy import inspect as sa_inspect

from league.utils.logger import setup_logger

logger = setup_logger(__name__)

CHANNEL_PREFIX = "league"

ChangeCallback = Callable[['ChangeEvent'], Union[None, Awaitable[None]]]


@dataclass(frozen=True)
class ChangeEvent:
    """One insert/update/delete on a record set"""
    table: str
    action: str                   # "insert", "update" or "delete"
    key: Optional[int] = None     # filter value, e.g. the lobby id
    record: Dict[str, Any] = field(default_factory=dict)
    
    def to_json(self) -> str:
        return json.dumps(
            {"table": self.table, "action": self.action, "key": self.key, "record": self.record},
            default=_json_default
        )


def _json_default(value):
    if isinstance(value, datetime):
        return value.isoformat()
    if hasattr(value, "value"):
        return value.value
    return str(value)


def record_to_dict(instance) -> Dict[str, Any]:
    """Column values of a mapped instance, for event payloads"""
    if instance is None:
        return {}
    mapper = sa_inspect(instance).mapper
    return {column.key: getattr(instance, column.key) for column in mapper.column_attrs}


class Subscription:
    """
    Handle returned by ChangeFeed.subscribe.
    
    Events queue up until consumed with get() or async iteration, unless
    a callback was given, in which case the queue stays empty. cancel()
    detaches the subscription and is safe to call more than once.
    """
    
    def __init__(self, feed: 'ChangeFeed', table: str, key: Optional[int],
                 callback: Optional[ChangeCallback] = None):
        self._feed = feed
        self.table = table
        self.key = key
        self.callback = callback
        self.queue: asyncio.Queue = asyncio.Queue()
        self.cancelled = False
    
    def matches(self, event: ChangeEvent) -> bool:
        return event.table == self.table and (self.key is None or self.key == event.key)
    
    async def get(self, timeout: Optional[float] = None) -> ChangeEvent:
        """Wait for the next event"""
        if timeout is None:
            return await self.queue.get()
        return await asyncio.wait_for(self.queue.get(), timeout)
    
    def drain(self) -> List[ChangeEvent]:
        """Return every queued event without waiting"""
        events = []
        while not self.queue.empty():
            events.append(self.queue.get_nowait())
        return events
    
    def cancel(self):
        if not self.cancelled:
            self.cancelled = True
            self._feed._remove(self)
    
    def __aiter__(self):
        return self
    
    async def __anext__(self) -> ChangeEvent:
        if self.cancelled and self.queue.empty():
            raise StopAsyncIteration
        return await self.queue.get()
    
    def __repr__(self):
        return f"<Subscription(table='{self.table}', key={self.key}, cancelled={self.cancelled})>"


class ChangeFeed:
    """Subscribe/notify hub; one instance per process"""
    
    def __init__(self, redis_client=None):
        self.redis_client = redis_client
        self._subscriptions: List[Subscription] = []
    
    def subscribe(self, table: str, key: Optional[int] = None,
                  callback: Optional[ChangeCallback] = None) -> Subscription:
        subscription = Subscription(self, table, key, callback)
        self._subscriptions.append(subscription)
        logger.debug(f"Subscribed to {table} (key={key})")
        return subscription
    
    def _remove(self, subscription: Subscription):
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)
            logger.debug(f"Unsubscribed from {subscription.table} (key={subscription.key})")
    
    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)
    
    async def publish(self, event: ChangeEvent) -> int:
        """
        Deliver an event to every matching subscription.
        
        Returns:
            Number of local subscriptions that received the event
        """
        delivered = 0
        for subscription in list(self._subscriptions):
            if not subscription.matches(event):
                continue
            delivered += 1
            if subscription.callback is None:
                subscription.queue.put_nowait(event)
            else:
                try:
                    outcome = subscription.callback(event)
                    if inspect.isawaitable(outcome):
                        await outcome
                except Exception as e:
                    logger.error(f"Change callback for {event.table} failed: {e}")
        
        if self.redis_client is not None:
            await self._mirror_to_redis(event)
        
        return delivered
    
    async def publish_many(self, events: List[ChangeEvent]):
        for event in events:
            await self.publish(event)
    
    async def _mirror_to_redis(self, event: ChangeEvent):
        payload = event.to_json()
        channels = [f"{CHANNEL_PREFIX}:{event.table}"]
        if event.key is not None:
            channels.append(f"{CHANNEL_PREFIX}:{event.table}:{event.key}")
        try:
            for channel in channels:
                await self.redis_client.publish(channel, payload)
        except RedisError as e:
            logger.warning(f"Failed to mirror {event.table} change to Redis: {e}")
    
    async def close(self):
        for subscription in list(self._subscriptions):
            subscription.cancel()
        if self.redis_client is not None:
            await self.redis_client.aclose()
            self.redis_client = None
