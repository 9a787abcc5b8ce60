"""Conversation store abstractions and in-memory implementation."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, replace
from typing import Any, AsyncIterator

from relay.bot.base import BotEngine
from relay.conversations.models import (
    BotState,
    Conversation,
    ConversationStatus,
    Message,
    SenderRole,
    utcnow,
)
from relay.core.errors import UnknownConversation
from relay.realtime.broadcaster import Broadcaster, Delta, EventName

logger = logging.getLogger("relay.store")


@dataclass(slots=True)
class BotOutcome:
    """Result of applying the bot to an inbound text."""

    conversation: Conversation
    reply_text: str | None = None


class ConversationStore(ABC):
    """Abstract interface for reading and mutating conversations."""

    @abstractmethod
    async def upsert_on_first_message(self, customer_id: str, display_name: str | None = None) -> Conversation:
        """Create the conversation if absent; return the existing one unchanged otherwise."""

    @abstractmethod
    async def append_message(self, customer_id: str, message: Message) -> Conversation:
        """Append a message to an existing conversation."""

    @abstractmethod
    async def set_status(self, customer_id: str, new_status: ConversationStatus | str) -> Conversation:
        """Overwrite the operator-facing status."""

    @abstractmethod
    async def set_ticket_reference(self, customer_id: str, reference: str) -> Conversation:
        """Overwrite the free-text ticket reference operators keep for a conversation."""

    @abstractmethod
    async def apply_bot_transition(self, customer_id: str, inbound_text: str) -> BotOutcome:
        """Run the bot on ``inbound_text`` and store its next state and status."""

    @abstractmethod
    def get(self, customer_id: str) -> Conversation | None:
        """Return a detached copy of one conversation."""

    @abstractmethod
    def snapshot(self) -> dict[str, dict[str, Any]]:
        """Return every conversation keyed by customer id."""


class InMemoryConversationStore(ConversationStore):
    """Process-local store; mutations are serialized per customer id.

    Every mutation publishes its delta while the customer's lock is held so
    broadcast order matches mutation order for that customer.
    """

    def __init__(self, bot: BotEngine, broadcaster: Broadcaster | None = None) -> None:
        self._bot = bot
        self._broadcaster = broadcaster or Broadcaster()
        self._conversations: dict[str, Conversation] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._conversations)

    @asynccontextmanager
    async def _locked(self, customer_id: str) -> AsyncIterator[None]:
        lock = self._locks.get(customer_id)
        if lock is None:
            lock = self._locks[customer_id] = asyncio.Lock()
        async with lock:
            yield

    def _require(self, customer_id: str) -> Conversation:
        conversation = self._conversations.get(customer_id)
        if conversation is None:
            raise UnknownConversation(customer_id)
        return conversation

    def _publish_conversation(self, conversation: Conversation) -> None:
        self._broadcaster.publish(
            Delta(EventName.CONVERSATION_UPDATED, {"conversation": conversation.to_dict()})
        )

    def _publish_status(self, conversation: Conversation) -> None:
        self._broadcaster.publish(
            Delta(
                EventName.STATUS_CHANGED,
                {"customer_id": conversation.customer_id, "status": conversation.status.value},
            )
        )

    async def upsert_on_first_message(self, customer_id: str, display_name: str | None = None) -> Conversation:
        async with self._locked(customer_id):
            existing = self._conversations.get(customer_id)
            if existing is not None:
                return existing.copy()

            conversation = Conversation(customer_id=customer_id, display_name=display_name or customer_id)
            self._conversations[customer_id] = conversation
            logger.info("Conversation created for %s", customer_id)
            self._publish_conversation(conversation)
            return conversation.copy()

    async def append_message(self, customer_id: str, message: Message) -> Conversation:
        async with self._locked(customer_id):
            conversation = self._require(customer_id)

            if conversation.messages and message.timestamp < conversation.messages[-1].timestamp:
                message = replace(message, timestamp=conversation.messages[-1].timestamp)
            conversation.messages.append(message)
            conversation.updated_at = utcnow()

            if message.sender is SenderRole.OPERATOR:
                if conversation.bot_state is not BotState.FORWARDED:
                    logger.info("Conversation %s handed off to operator", customer_id)
                conversation.bot_state = BotState.FORWARDED
                if message.operator_id:
                    conversation.assigned_operator = message.operator_id

            self._publish_conversation(conversation)
            return conversation.copy()

    async def set_status(self, customer_id: str, new_status: ConversationStatus | str) -> Conversation:
        status = ConversationStatus.coerce(new_status)
        async with self._locked(customer_id):
            conversation = self._require(customer_id)
            conversation.status = status
            conversation.updated_at = utcnow()
            logger.info("Status for %s set to %s", customer_id, status.value)
            self._publish_status(conversation)
            return conversation.copy()

    async def set_ticket_reference(self, customer_id: str, reference: str) -> Conversation:
        async with self._locked(customer_id):
            conversation = self._require(customer_id)
            conversation.ticket_reference = reference
            conversation.updated_at = utcnow()
            logger.info("Ticket reference for %s updated", customer_id)
            self._publish_conversation(conversation)
            return conversation.copy()

    async def apply_bot_transition(self, customer_id: str, inbound_text: str) -> BotOutcome:
        async with self._locked(customer_id):
            conversation = self._require(customer_id)
            result = self._bot.transition(conversation.bot_state, conversation.status, inbound_text)

            status_changed = result.new_status is not None and result.new_status is not conversation.status
            conversation.bot_state = result.next_state
            if result.new_status is not None:
                conversation.status = result.new_status
            conversation.updated_at = utcnow()

            # A reply is always followed by an append, which publishes the full record.
            if status_changed and not result.reply_text:
                self._publish_status(conversation)

            return BotOutcome(conversation=conversation.copy(), reply_text=result.reply_text)

    def get(self, customer_id: str) -> Conversation | None:
        conversation = self._conversations.get(customer_id)
        return conversation.copy() if conversation is not None else None

    def snapshot(self) -> dict[str, dict[str, Any]]:
        return {customer_id: conversation.to_dict() for customer_id, conversation in self._conversations.items()}
