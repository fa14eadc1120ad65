"""Topic-addressed publish/subscribe bus decoupling pipeline stages."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from enum import Enum
from typing import Any


logger = logging.getLogger(__name__)


class BusError(Exception):
    """Base class for event bus failures."""
    pass


class QueueFullError(BusError):
    """Raised by publish when a subscriber queue is full under the REJECT policy."""
    pass


class BusClosedError(BusError):
    """Raised by publish once the bus has been closed."""
    pass


class QueueFullPolicy(Enum):
    """What publish does when a subscriber queue is full."""
    BLOCK = "block"
    DROP_OLDEST = "drop_oldest"
    REJECT = "reject"


class Subscription:
    """A subscriber's bounded inbox for one message type."""

    def __init__(self, bus: EventBus, topic: type, maxsize: int):
        self.bus = bus
        self.topic = topic
        self.queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0
        self.active = True

    async def get(self) -> Any:
        return await self.queue.get()

    def task_done(self) -> None:
        self.queue.task_done()

    async def join(self) -> None:
        """Wait until every delivered message has been marked done."""
        await self.queue.join()

    def qsize(self) -> int:
        return self.queue.qsize()

    def unsubscribe(self) -> None:
        self.bus.unsubscribe(self)


class EventBus:
    """
    Delivers each published message to every live subscriber of its type.

    Each subscriber has its own bounded queue, so a slow subscriber only
    affects publishers through the configured full-queue policy. Messages
    published before a subscriber registers are never delivered to it.
    """

    def __init__(self, maxsize: int = 100, policy: QueueFullPolicy = QueueFullPolicy.BLOCK):
        """
        Initialize event bus.

        Args:
            maxsize: Per-subscriber queue bound (0 = unbounded)
            policy: Behaviour when a subscriber queue is full
        """
        self.maxsize = maxsize
        self.policy = policy
        self._subscribers: dict[type, list[Subscription]] = defaultdict(list)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, topic: type, maxsize: int | None = None) -> Subscription:
        subscription = Subscription(self, topic, self.maxsize if maxsize is None else maxsize)
        self._subscribers[topic].append(subscription)
        logger.debug(f"Subscribed to {topic.__name__} ({len(self._subscribers[topic])} subscriber(s))")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subscribers = self._subscribers.get(subscription.topic, [])
        if subscription in subscribers:
            subscribers.remove(subscription)
        subscription.active = False

    def subscriber_count(self, topic: type) -> int:
        return len(self._subscribers.get(topic, []))

    async def publish(self, message: Any) -> int:
        """
        Publish a message to all current subscribers of its type.

        Returns:
            Number of subscribers the message was delivered to

        Raises:
            BusClosedError: The bus has been closed
            QueueFullError: A subscriber queue is full and the policy is REJECT
        """
        if self._closed:
            raise BusClosedError(f"Cannot publish {type(message).__name__}: bus is closed")

        # Snapshot so subscribe/unsubscribe during a blocked put is safe.
        subscribers = tuple(self._subscribers.get(type(message), ()))
        delivered = 0
        for subscription in subscribers:
            if not subscription.active:
                continue
            await self._deliver(subscription, message)
            delivered += 1
        return delivered

    async def _deliver(self, subscription: Subscription, message: Any) -> None:
        queue = subscription.queue
        if not queue.full():
            queue.put_nowait(message)
            return

        if self.policy is QueueFullPolicy.BLOCK:
            await queue.put(message)
        elif self.policy is QueueFullPolicy.DROP_OLDEST:
            queue.get_nowait()
            queue.task_done()
            subscription.dropped += 1
            logger.warning(
                f"{subscription.topic.__name__} queue full; dropped oldest message "
                f"({subscription.dropped} dropped so far)"
            )
            queue.put_nowait(message)
        else:
            raise QueueFullError(
                f"{subscription.topic.__name__} queue full ({queue.maxsize}); message rejected"
            )

    def close(self) -> None:
        """Mark the bus unavailable. Queued messages stay readable."""
        self._closed = True
        logger.info("Event bus closed.")
