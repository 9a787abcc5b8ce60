"""Dataclasses representing conversations, messages and their states."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from relay.core.errors import InvalidStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConversationStatus(str, Enum):
    """Operator-facing workflow tabs."""

    NEW = "new"
    AWAITING_RESPONSE = "awaiting_response"
    TICKET_OPENING = "ticket_opening"
    STATUS_INQUIRY = "status_inquiry"
    INFO_QUESTIONS = "info_questions"
    IN_PROGRESS = "in_progress"
    CLOSED = "closed"

    @classmethod
    def coerce(cls, value: object) -> ConversationStatus:
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError as exc:
            raise InvalidStatus(value) from exc


class BotState(str, Enum):
    """Position of the triage bot within a conversation."""

    UNINITIALIZED = "uninitialized"
    AWAITING_CHOICE = "awaiting_choice"
    AWAITING_FOLLOWUP = "awaiting_followup"
    FORWARDED = "forwarded"


class SenderRole(str, Enum):
    CUSTOMER = "customer"
    BOT = "bot"
    OPERATOR = "operator"


def local_message_id() -> str:
    """Identifier for messages the provider never acknowledged."""

    return f"local-{uuid.uuid4().hex}"


@dataclass(frozen=True, slots=True)
class Message:
    """Single immutable message within a conversation."""

    sender: SenderRole
    text: str
    id: str = field(default_factory=local_message_id)
    timestamp: datetime = field(default_factory=utcnow)
    operator_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "sender": self.sender.value,
            "text": self.text,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.operator_id:
            payload["operator_id"] = self.operator_id
        return payload


@dataclass(slots=True)
class Conversation:
    """Full record of one customer's interaction."""

    customer_id: str
    display_name: str
    status: ConversationStatus = ConversationStatus.NEW
    bot_state: BotState = BotState.UNINITIALIZED
    ticket_reference: str = ""
    messages: list[Message] = field(default_factory=list)
    assigned_operator: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def copy(self) -> Conversation:
        """Detached copy; messages are immutable so a shallow list copy suffices."""

        return replace(self, messages=list(self.messages))

    def to_dict(self) -> dict[str, Any]:
        return {
            "customer_id": self.customer_id,
            "display_name": self.display_name,
            "status": self.status.value,
            "bot_state": self.bot_state.value,
            "ticket_reference": self.ticket_reference,
            "assigned_operator": self.assigned_operator,
            "messages": [message.to_dict() for message in self.messages],
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
