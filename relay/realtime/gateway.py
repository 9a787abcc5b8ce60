"""Operator actions arriving from dashboard sessions."""

from __future__ import annotations

import logging
from functools import partial
from typing import Any, Awaitable, Callable

from relay.conversations.models import Message, SenderRole
from relay.conversations.store import ConversationStore
from relay.core.errors import InvalidStatus, UnknownConversation
from relay.core.metrics import MetricsCollector
from relay.core.queue import KeyedTaskQueue
from relay.outbound.dispatcher import OutboundDispatcher, SendSuccess
from relay.realtime.broadcaster import Delta, EventName, Subscription

logger = logging.getLogger("relay.gateway")

MAX_TICKET_REFERENCE_LENGTH = 500


class DashboardSession:
    """One connected dashboard; ``notify`` reaches only this session."""

    def __init__(self, subscription: Subscription, operator_id: str | None = None) -> None:
        self.subscription = subscription
        self.operator_id = operator_id

    @property
    def id(self) -> int:
        return self.subscription.id

    def notify(self, delta: Delta) -> None:
        self.subscription.deliver(delta)

    def error(self, message: str, **data: Any) -> None:
        self.notify(Delta(EventName.ERROR, {"message": message, **data}))


Action = Callable[[DashboardSession, dict[str, Any]], Awaitable[None]]


class DashboardGateway:
    """Routes client events through a single dispatch table."""

    def __init__(
        self,
        store: ConversationStore,
        dispatcher: OutboundDispatcher,
        metrics: MetricsCollector | None = None,
        queue: KeyedTaskQueue | None = None,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._metrics = metrics or MetricsCollector()
        self._queue = queue or KeyedTaskQueue()
        self._actions: dict[str, Action] = {
            "send_message": self.send_message,
            "change_status": self.change_status,
            "update_ticket_reference": self.update_ticket_reference,
        }

    def dispatch(self, session: DashboardSession, frame: Any) -> None:
        """Queue ``frame`` without waiting for it.

        Frames are ordered per (event, customer), so a slow send never holds up
        a status change, while two sends to one customer keep their order.
        """

        key = "invalid"
        if isinstance(frame, dict) and isinstance(frame.get("data"), dict):
            key = f"{frame.get('event')}:{frame['data'].get('customer_id')}"
        self._queue.submit(key, partial(self.handle, session, frame))

    async def join(self) -> None:
        await self._queue.join()

    async def close(self) -> None:
        await self._queue.close()

    async def handle(self, session: DashboardSession, frame: Any) -> None:
        if not isinstance(frame, dict):
            session.error("frame must be a JSON object")
            return
        name = frame.get("event")
        data = frame.get("data")
        action = self._actions.get(name) if isinstance(name, str) else None
        if action is None:
            logger.warning("Session %s sent unknown event %r", session.id, name)
            session.error("unknown event", event=name)
            return
        if not isinstance(data, dict):
            session.error("event data must be an object", event=name)
            return
        await action(session, data)

    async def send_message(self, session: DashboardSession, data: dict[str, Any]) -> None:
        customer_id = data.get("customer_id")
        text = data.get("text")
        if not isinstance(customer_id, str) or not isinstance(text, str) or not text.strip():
            session.error("send_message requires customer_id and non-empty text", event="send_message")
            return

        if self._store.get(customer_id) is None:
            logger.warning("Session %s tried to message unknown conversation %s", session.id, customer_id)
            session.error("unknown conversation", event="send_message", customer_id=customer_id)
            return

        # No store lock is held here; status changes proceed during the send.
        result = await self._dispatcher.send(customer_id, text)
        if not isinstance(result, SendSuccess):
            self._metrics.record_send(result.reason)
            logger.error("Operator message to %s failed: %s", customer_id, result.reason)
            session.notify(
                Delta(
                    EventName.SEND_FAILED,
                    {"customer_id": customer_id, "text": text, "reason": result.reason},
                )
            )
            return

        self._metrics.record_send("ok")
        message = Message(
            sender=SenderRole.OPERATOR,
            text=text,
            id=result.message_id,
            operator_id=session.operator_id,
        )
        try:
            await self._store.append_message(customer_id, message)
        except UnknownConversation:
            logger.warning("Conversation %s vanished before the operator message was stored", customer_id)
            session.error("unknown conversation", event="send_message", customer_id=customer_id)

    async def change_status(self, session: DashboardSession, data: dict[str, Any]) -> None:
        customer_id = data.get("customer_id")
        new_status = data.get("new_status")
        if not isinstance(customer_id, str):
            session.error("change_status requires customer_id", event="change_status")
            return
        try:
            await self._store.set_status(customer_id, new_status)
        except UnknownConversation:
            logger.warning("Session %s tried to move unknown conversation %s", session.id, customer_id)
            session.error("unknown conversation", event="change_status", customer_id=customer_id)
        except InvalidStatus:
            logger.warning("Session %s sent invalid status %r for %s", session.id, new_status, customer_id)
            session.error("invalid status", event="change_status", customer_id=customer_id, status=new_status)

    async def update_ticket_reference(self, session: DashboardSession, data: dict[str, Any]) -> None:
        customer_id = data.get("customer_id")
        reference = data.get("ticket_reference")
        if not isinstance(customer_id, str) or not isinstance(reference, str):
            session.error(
                "update_ticket_reference requires customer_id and ticket_reference",
                event="update_ticket_reference",
            )
            return
        if len(reference) > MAX_TICKET_REFERENCE_LENGTH:
            session.error(
                f"ticket_reference is limited to {MAX_TICKET_REFERENCE_LENGTH} characters",
                event="update_ticket_reference",
                customer_id=customer_id,
            )
            return
        try:
            await self._store.set_ticket_reference(customer_id, reference.strip())
        except UnknownConversation:
            logger.warning("Session %s tried to annotate unknown conversation %s", session.id, customer_id)
            session.error("unknown conversation", event="update_ticket_reference", customer_id=customer_id)
