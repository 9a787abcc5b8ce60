"""Bot-related data structures."""

from __future__ import annotations

from dataclasses import dataclass

from relay.conversations.models import BotState, ConversationStatus


@dataclass(frozen=True, slots=True)
class BotMessages:
    """Reply texts used by the triage bot."""

    welcome: str = (
        "Hello! Welcome to our support line. How can we help?\n"
        "1. Open a service ticket\n"
        "2. Check the status of a ticket\n"
        "3. Information / questions"
    )
    invalid_option: str = "Invalid option. Please choose 1, 2 or 3."
    ticket_opening: str = (
        "Your ticket will be opened and forwarded to an operator. "
        "Please send your full name and service order number."
    )
    status_inquiry: str = "Ok, an operator will check the status of your service order."
    info_forwarding: str = "Sure, your question will be forwarded to an operator."


@dataclass(frozen=True, slots=True)
class BotTransition:
    """Outcome of feeding one inbound text to the bot."""

    next_state: BotState
    reply_text: str | None = None
    new_status: ConversationStatus | None = None
