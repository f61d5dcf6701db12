"""In-process event fan-out registry.

Subscriptions are registered under routing keys:
    status                  status changes (broadcast)
    {topic}:{instance_id}   logs / metrics / health of one instance
    alerts:{LEVEL}          alerts of one level
    alerts:all              alerts of every level

Every subscription owns a bounded queue, so each subscriber reads at its
own pace. Delivery never removes a registration. When a subscriber falls
behind and its queue is full, its oldest queued event is dropped and
counted on that subscription; publishers never block.
"""

import asyncio
import logging
from collections import defaultdict
from typing import Any

from pydantic import BaseModel

from flowhub.app.config import get_settings
from flowhub.app.metrics.collector import FANOUT_DROPPED, FANOUT_SUBSCRIPTIONS
from flowhub.core.domain.instance import AlertLevel, Topic
from flowhub.core.logging_schema import Component, LogEvent
from flowhub.core.models import Event

logger = logging.getLogger(__name__)

ALL_LEVELS = "all"

_CLOSED = object()


def subscription_key(
    topic: Topic, instance_id: str | None = None, level: AlertLevel | None = None
) -> str:
    """Routing key a subscriber registers under."""
    if topic == Topic.STATUS:
        return str(Topic.STATUS)
    if topic == Topic.ALERTS:
        return f"{Topic.ALERTS}:{level or ALL_LEVELS}"
    if not instance_id:
        raise ValueError(f"topic {topic} requires an instance id")
    return f"{topic}:{instance_id}"


def delivery_keys(
    topic: Topic, instance_id: str | None = None, level: AlertLevel | None = None
) -> list[str]:
    """Routing keys an emitted event is delivered to."""
    if topic == Topic.STATUS:
        return [str(Topic.STATUS)]
    if topic == Topic.ALERTS:
        keys = [f"{Topic.ALERTS}:{ALL_LEVELS}"]
        if level:
            keys.insert(0, f"{Topic.ALERTS}:{level}")
        return keys
    if not instance_id:
        return []
    return [f"{topic}:{instance_id}"]


class Subscription:
    """One subscriber's feed: an independent bounded queue of events.

    Iterate with ``async for event in subscription`` or poll with
    ``await subscription.get(timeout)``. Iteration ends once the
    subscription is closed.
    """

    def __init__(
        self,
        registry: "EventFanout",
        connection_id: str,
        key: str,
        topic: Topic,
        instance_id: str | None,
        level: AlertLevel | None,
        maxsize: int,
    ) -> None:
        self._registry = registry
        self.connection_id = connection_id
        self.key = key
        self.topic = topic
        self.instance_id = instance_id
        self.level = level
        self.dropped = 0
        self.closed = False
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=maxsize)

    def __repr__(self) -> str:
        return f"Subscription(connection={self.connection_id!r}, key={self.key!r})"

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def _put(self, item: Any) -> bool:
        """Enqueue without blocking. Returns False if an event was dropped."""
        lost = False
        if self._queue.full():
            try:
                self._queue.get_nowait()
                lost = True
            except asyncio.QueueEmpty:
                pass
        self._queue.put_nowait(item)
        return not lost

    def deliver(self, event: Event) -> bool:
        if self.closed:
            return False
        if not self._put(event):
            self.dropped += 1
            FANOUT_DROPPED.inc()
            if self.dropped == 1 or self.dropped % 100 == 0:
                logger.warning(
                    "Subscriber %s lagging on %s (dropped=%d)",
                    self.connection_id,
                    self.key,
                    self.dropped,
                    extra={
                        "event": LogEvent.SUBSCRIBER_LAGGED,
                        "component": Component.FAN,
                        "connection_id": self.connection_id,
                        "key": self.key,
                        "dropped": self.dropped,
                    },
                )
        return True

    def _finish(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._put(_CLOSED)

    def close(self) -> None:
        """Detach this feed from the registry."""
        self._registry.remove(self)

    async def get(self, timeout: float | None = None) -> Event | None:
        """Next event, or None on timeout or once closed."""
        if self.closed and self._queue.empty():
            return None
        try:
            if timeout is None:
                item = await self._queue.get()
            else:
                item = await asyncio.wait_for(self._queue.get(), timeout)
        except TimeoutError:
            return None
        if item is _CLOSED:
            return None
        return item

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> Event:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event


class EventFanout:
    """Routes emitted events to every matching subscription exactly once."""

    def __init__(self, queue_maxsize: int | None = None) -> None:
        self._maxsize = queue_maxsize or get_settings().subscriptions.queue_maxsize
        self._by_key: dict[str, list[Subscription]] = {}
        self._by_connection: dict[str, list[Subscription]] = defaultdict(list)

    def subscribe(
        self,
        connection_id: str,
        topic: Topic,
        instance_id: str | None = None,
        level: AlertLevel | None = None,
    ) -> Subscription:
        key = subscription_key(topic, instance_id, level)
        sub = Subscription(
            self, connection_id, key, topic, instance_id, level, self._maxsize
        )
        self._by_key.setdefault(key, []).append(sub)
        self._by_connection[connection_id].append(sub)
        FANOUT_SUBSCRIPTIONS.inc()
        logger.debug(
            "Subscriber attached: %s -> %s",
            connection_id,
            key,
            extra={
                "event": LogEvent.SUBSCRIBER_ATTACHED,
                "component": Component.FAN,
                "connection_id": connection_id,
                "key": key,
            },
        )
        return sub

    def remove(self, sub: Subscription) -> None:
        """Remove one subscription, pruning keys that become empty."""
        subs = self._by_key.get(sub.key)
        if subs is not None and sub in subs:
            subs.remove(sub)
            FANOUT_SUBSCRIPTIONS.dec()
            if not subs:
                del self._by_key[sub.key]

        conn_subs = self._by_connection.get(sub.connection_id)
        if conn_subs is not None and sub in conn_subs:
            conn_subs.remove(sub)
            if not conn_subs:
                del self._by_connection[sub.connection_id]

        sub._finish()

    def unsubscribe(self, connection_id: str) -> int:
        """Remove every subscription held by a connection. Returns the count."""
        subs = list(self._by_connection.get(connection_id, []))
        for sub in subs:
            self.remove(sub)
        if subs:
            logger.debug(
                "Subscriber detached: %s (%d feeds)",
                connection_id,
                len(subs),
                extra={
                    "event": LogEvent.SUBSCRIBER_DETACHED,
                    "component": Component.FAN,
                    "connection_id": connection_id,
                },
            )
        return len(subs)

    def publish(
        self,
        topic: Topic,
        payload: BaseModel | dict[str, Any],
        *,
        instance_id: str | None = None,
        level: AlertLevel | None = None,
    ) -> int:
        """Deliver an event to all matching subscriptions.

        Returns:
            Number of subscriptions the event was delivered to.
        """
        keys = delivery_keys(topic, instance_id, level)
        targets: dict[int, Subscription] = {}
        for key in keys:
            for sub in self._by_key.get(key, ()):
                targets.setdefault(id(sub), sub)
        if not targets:
            return 0

        if isinstance(payload, BaseModel):
            payload = payload.model_dump(mode="json")
        event = Event(topic=topic, instance_id=instance_id, level=level, payload=payload)

        delivered = 0
        for sub in targets.values():
            if sub.deliver(event):
                delivered += 1
        return delivered

    def subscriber_count(self, key: str) -> int:
        return len(self._by_key.get(key, ()))

    def stats(self) -> dict[str, Any]:
        """Subscription counts overall and per topic."""
        by_type: dict[str, int] = defaultdict(int)
        for key, subs in self._by_key.items():
            by_type[key.split(":", 1)[0]] += len(subs)
        return {
            "total_subscriptions": sum(by_type.values()),
            "subscriptions_by_type": dict(by_type),
            "keys": sorted(self._by_key),
        }

    def close(self) -> None:
        """Close every subscription (application shutdown)."""
        for connection_id in list(self._by_connection):
            self.unsubscribe(connection_id)
