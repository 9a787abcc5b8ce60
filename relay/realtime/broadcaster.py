"""Publish/subscribe bus fanning store deltas out to dashboard sessions."""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from relay.core.errors import SubscriptionOverflow

logger = logging.getLogger("relay.broadcast")

DEFAULT_QUEUE_SIZE = 1000


class EventName(str, Enum):
    """Server-to-client event names on the realtime channel."""

    SNAPSHOT = "snapshot"
    CONVERSATION_UPDATED = "conversation_updated"
    STATUS_CHANGED = "status_changed"
    DELIVERY_STATUS = "delivery_status"
    SEND_FAILED = "send_failed"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class Delta:
    """One event pushed to dashboard sessions."""

    event: EventName
    data: dict[str, Any] = field(default_factory=dict)

    def to_frame(self) -> dict[str, Any]:
        return {"event": self.event.value, "data": self.data}


class Subscription:
    """A session's private, bounded FIFO of deltas.

    Once the queue overflows the subscription is spent: later deliveries are
    ignored and ``next`` raises ``SubscriptionOverflow``.
    """

    _ids = itertools.count(1)

    def __init__(self, maxsize: int = DEFAULT_QUEUE_SIZE) -> None:
        self.id = next(self._ids)
        self.overflowed = False
        self._queue: asyncio.Queue[Delta] = asyncio.Queue(maxsize)

    def deliver(self, delta: Delta) -> bool:
        if self.overflowed:
            return False
        try:
            self._queue.put_nowait(delta)
        except asyncio.QueueFull:
            self.overflowed = True
            logger.warning("Subscription %s overflowed at %s pending deltas", self.id, self._queue.maxsize)
            return False
        return True

    async def next(self) -> Delta:
        if self.overflowed:
            raise SubscriptionOverflow(f"subscription {self.id} fell behind")
        return await self._queue.get()

    def pending(self) -> list[Delta]:
        """Drain and return everything queued so far without waiting."""

        drained: list[Delta] = []
        while not self._queue.empty():
            drained.append(self._queue.get_nowait())
        return drained


class Broadcaster:
    """Fan-out bus. ``publish`` is synchronous, so call order is delivery order."""

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE) -> None:
        self._queue_size = queue_size
        self._subscriptions: dict[int, Subscription] = {}

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self) -> Subscription:
        subscription = Subscription(self._queue_size)
        self._subscriptions[subscription.id] = subscription
        logger.debug("Subscription %s opened (total=%s)", subscription.id, self.subscriber_count)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if self._subscriptions.pop(subscription.id, None) is not None:
            logger.debug("Subscription %s closed (total=%s)", subscription.id, self.subscriber_count)

    def publish(self, delta: Delta) -> None:
        for subscription in list(self._subscriptions.values()):
            if not subscription.deliver(delta):
                self.unsubscribe(subscription)
