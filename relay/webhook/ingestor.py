"""Drive the conversation store and bot from normalized webhook events."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from functools import partial
from typing import Awaitable, Callable

from relay.conversations.models import Message, SenderRole
from relay.conversations.store import ConversationStore
from relay.core.metrics import MetricsCollector
from relay.core.queue import KeyedTaskQueue
from relay.outbound.dispatcher import OutboundDispatcher, SendSuccess
from relay.realtime.broadcaster import Broadcaster, Delta, EventName
from relay.webhook.events import DeliveryStatus, InboundMessage, WebhookEvent

logger = logging.getLogger("relay.webhook")


class WebhookIngestor:
    """Queues events per customer and applies them in receipt order."""

    def __init__(
        self,
        store: ConversationStore,
        dispatcher: OutboundDispatcher,
        broadcaster: Broadcaster,
        metrics: MetricsCollector | None = None,
        queue: KeyedTaskQueue | None = None,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._broadcaster = broadcaster
        self._metrics = metrics or MetricsCollector()
        self._queue = queue or KeyedTaskQueue()
        self._handlers: dict[type, Callable[..., Awaitable[None]]] = {
            InboundMessage: self._handle_message,
            DeliveryStatus: self._handle_status,
        }

    def submit(self, events: Iterable[WebhookEvent]) -> int:
        """Enqueue events and return how many were accepted."""

        count = 0
        for event in events:
            self._queue.submit(event.customer_id, partial(self.process, event))
            count += 1
        return count

    async def join(self) -> None:
        await self._queue.join()

    async def close(self) -> None:
        await self._queue.close()

    async def process(self, event: WebhookEvent) -> None:
        handler = self._handlers.get(type(event))
        if handler is None:
            logger.warning("No handler for event %r", event)
            self._metrics.record_dropped(type(event).__name__)
            return
        await handler(event)

    async def _handle_message(self, event: InboundMessage) -> None:
        self._metrics.record_inbound()
        logger.info("Message %s received from %s", event.provider_message_id, event.customer_id)

        await self._store.upsert_on_first_message(event.customer_id, event.display_name)
        await self._store.append_message(
            event.customer_id,
            Message(
                sender=SenderRole.CUSTOMER,
                text=event.text,
                id=event.provider_message_id,
                timestamp=event.arrival_time,
            ),
        )

        outcome = await self._store.apply_bot_transition(event.customer_id, event.text)
        if not outcome.reply_text:
            return

        result = await self._dispatcher.send(event.customer_id, outcome.reply_text)
        if isinstance(result, SendSuccess):
            self._metrics.record_send("ok")
            reply = Message(sender=SenderRole.BOT, text=outcome.reply_text, id=result.message_id)
        else:
            self._metrics.record_send(result.reason)
            logger.warning(
                "Bot reply to %s was not delivered (%s); recording it locally",
                event.customer_id,
                result.reason,
            )
            reply = Message(sender=SenderRole.BOT, text=outcome.reply_text)
        await self._store.append_message(event.customer_id, reply)

    async def _handle_status(self, event: DeliveryStatus) -> None:
        self._metrics.record_delivery_status()
        if self._store.get(event.customer_id) is None:
            logger.debug(
                "Ignoring %s status for unknown conversation %s",
                event.status_value,
                event.customer_id,
            )
            return

        logger.info(
            "Message %s for %s is %s",
            event.provider_message_id,
            event.customer_id,
            event.status_value,
        )
        self._broadcaster.publish(
            Delta(
                EventName.DELIVERY_STATUS,
                {
                    "customer_id": event.customer_id,
                    "message_id": event.provider_message_id,
                    "status": event.status_value,
                    "timestamp": event.event_time.isoformat(),
                },
            )
        )
