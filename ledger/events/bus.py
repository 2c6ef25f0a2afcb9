"""
Event buses for ledger notifications

InMemoryEventBus delivers to handlers in the publishing process.
RedisEventBus fans events out over Redis pub/sub so the order API and UI
processes can follow ledger activity.

Channels are "{prefix}.{event_type}"; subscriptions accept fnmatch patterns:
    ledger.trade_settled
    ledger.order_*
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional
import asyncio
import fnmatch

import redis.asyncio as aioredis
from loguru import logger

from .base import BaseEvent
from .ledger import (
    IntegrityAlertEvent,
    MessageDeadLetteredEvent,
    OrderCanceledEvent,
    OrderFilledEvent,
    OrderPlacedEvent,
    TradeSettledEvent,
)


EventHandler = Callable[[BaseEvent], Awaitable[None]]
EventFilter = Callable[[BaseEvent], bool]

EVENT_CLASSES: dict[str, type[BaseEvent]] = {
    "order_placed": OrderPlacedEvent,
    "order_canceled": OrderCanceledEvent,
    "order_filled": OrderFilledEvent,
    "trade_settled": TradeSettledEvent,
    "message_dead_lettered": MessageDeadLetteredEvent,
    "integrity_alert": IntegrityAlertEvent,
}


def decode_event(data: bytes) -> BaseEvent:
    """Rebuild a typed event from its wire form"""
    payload = BaseEvent.decode_wire(data)
    event_class = EVENT_CLASSES.get(payload["event_type"], BaseEvent)
    return event_class.model_validate(payload)


class IEventBus(ABC):
    """Abstract interface for event bus"""

    @abstractmethod
    async def publish(self, event: BaseEvent) -> None:
        """Deliver an event to every matching subscriber (never raises)"""
        pass

    @abstractmethod
    async def subscribe(
        self,
        event_type: str,
        handler: EventHandler,
        filter_func: Optional[EventFilter] = None
    ) -> str:
        """
        Subscribe to events

        Args:
            event_type: Event type or fnmatch pattern ("*", "order_*")
            handler: Async callback
            filter_func: Optional predicate applied after the pattern

        Returns:
            Subscription ID for unsubscribe()
        """
        pass

    @abstractmethod
    async def unsubscribe(self, subscription_id: str) -> None:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass


@dataclass
class Subscription:
    subscription_id: str
    pattern: str
    handler: EventHandler
    filter_func: Optional[EventFilter] = None

    def matches(self, event: BaseEvent) -> bool:
        if not fnmatch.fnmatch(event.event_type, self.pattern):
            return False
        return self.filter_func is None or self.filter_func(event)


class _SubscriberRegistry(IEventBus):
    """Subscription bookkeeping and handler dispatch shared by both buses"""

    def __init__(self):
        self.subscriptions: dict[str, Subscription] = {}
        self._next_id = 0
        self._closed = False

    async def subscribe(
        self,
        event_type: str,
        handler: EventHandler,
        filter_func: Optional[EventFilter] = None
    ) -> str:
        self._next_id += 1
        subscription_id = f"sub_{self._next_id}"
        new_pattern = not self._pattern_in_use(event_type)

        self.subscriptions[subscription_id] = Subscription(subscription_id, event_type, handler, filter_func)
        if new_pattern:
            await self._pattern_added(event_type)

        logger.debug(f"Subscription {subscription_id} -> {event_type}")
        return subscription_id

    async def unsubscribe(self, subscription_id: str) -> None:
        sub = self.subscriptions.pop(subscription_id, None)
        if sub is None:
            logger.warning(f"Subscription {subscription_id} not found")
            return

        if not self._pattern_in_use(sub.pattern):
            await self._pattern_removed(sub.pattern)
        logger.debug(f"Removed subscription {subscription_id}")

    def _pattern_in_use(self, pattern: str) -> bool:
        return any(s.pattern == pattern for s in self.subscriptions.values())

    async def _pattern_added(self, pattern: str) -> None:
        pass

    async def _pattern_removed(self, pattern: str) -> None:
        pass

    async def _dispatch(self, event: BaseEvent) -> None:
        targets = [sub for sub in self.subscriptions.values() if sub.matches(event)]
        if targets:
            await asyncio.gather(*(self._invoke(sub, event) for sub in targets))

    @staticmethod
    async def _invoke(sub: Subscription, event: BaseEvent) -> None:
        try:
            await sub.handler(event)
        except Exception as e:
            # Handler errors never propagate to the publisher
            logger.opt(exception=e).error(
                f"Handler {sub.subscription_id} failed on {event.event_type} {event.event_id}: {e}"
            )

    def get_statistics(self) -> dict[str, Any]:
        return {
            "num_subscriptions": len(self.subscriptions),
            "closed": self._closed,
        }


class InMemoryEventBus(_SubscriberRegistry):
    """In-process bus used by tests, the demo and single-process deployments"""

    def __init__(self):
        super().__init__()
        logger.info("Initialized InMemoryEventBus")

    async def publish(self, event: BaseEvent) -> None:
        if self._closed:
            logger.warning(f"Dropped {event.event_type} published after close")
            return
        await self._dispatch(event)

    async def close(self) -> None:
        self._closed = True
        self.subscriptions.clear()
        logger.info("Closed InMemoryEventBus")


class RedisEventBus(_SubscriberRegistry):
    """
    Redis pub/sub bus

    The ledger process mostly publishes; the listener task is only started
    once something in this process subscribes. Publishing is best-effort:
    ledger state is already committed, so Redis failures are logged and
    swallowed.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        channel_prefix: str = "ledger"
    ):
        super().__init__()
        self.redis_url = redis_url
        self.channel_prefix = channel_prefix
        self._redis: Optional[aioredis.Redis] = None
        self._pubsub = None
        self._listen_task: Optional[asyncio.Task] = None

        logger.info(f"Initialized RedisEventBus: {redis_url} prefix={channel_prefix}")

    async def connect(self) -> None:
        if self._redis is not None:
            return
        self._redis = aioredis.from_url(self.redis_url, decode_responses=False)
        self._pubsub = self._redis.pubsub()

        # Patterns registered before connect()
        for pattern in {s.pattern for s in self.subscriptions.values()}:
            await self._pattern_added(pattern)

        logger.info("Connected RedisEventBus")

    async def publish(self, event: BaseEvent) -> None:
        if self._closed or self._redis is None:
            logger.warning(f"Dropped {event.event_type}: event bus not connected")
            return

        try:
            await self._redis.publish(event.topic(self.channel_prefix), event.to_wire())
        except Exception as e:
            logger.error(f"Failed to publish {event.event_type} {event.event_id}: {e}")

    async def _pattern_added(self, pattern: str) -> None:
        if self._pubsub is None:
            return
        channel = f"{self.channel_prefix}.{pattern}"
        if "*" in pattern or "?" in pattern:
            await self._pubsub.psubscribe(channel)
        else:
            await self._pubsub.subscribe(channel)

        if self._listen_task is None:
            self._listen_task = asyncio.create_task(self._listen_loop())

    async def _pattern_removed(self, pattern: str) -> None:
        if self._pubsub is None:
            return
        channel = f"{self.channel_prefix}.{pattern}"
        if "*" in pattern or "?" in pattern:
            await self._pubsub.punsubscribe(channel)
        else:
            await self._pubsub.unsubscribe(channel)

    async def _listen_loop(self) -> None:
        while not self._closed:
            try:
                message = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"RedisEventBus listener error: {e}")
                await asyncio.sleep(1)
                continue

            if message is None:
                continue

            try:
                event = decode_event(message["data"])
            except Exception as e:
                logger.error(f"Undecodable event on {message.get('channel')}: {e}")
                continue

            await self._dispatch(event)

    async def close(self) -> None:
        self._closed = True

        if self._listen_task:
            self._listen_task.cancel()
            try:
                await self._listen_task
            except asyncio.CancelledError:
                pass

        if self._pubsub is not None:
            await self._pubsub.aclose()
        if self._redis is not None:
            await self._redis.aclose()

        logger.info("Closed RedisEventBus")


def create_event_bus(bus_type: str = "memory", **kwargs: Any) -> IEventBus:
    """Build an event bus by backend name ('memory' or 'redis')"""
    if bus_type == "memory":
        return InMemoryEventBus()
    if bus_type == "redis":
        return RedisEventBus(**kwargs)
    raise ValueError(f"Unknown bus type: {bus_type}")
