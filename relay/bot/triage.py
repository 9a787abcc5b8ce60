"""Menu-driven triage bot."""

from __future__ import annotations

import re

from relay.bot.base import BotEngine
from relay.bot.types import BotMessages, BotTransition
from relay.conversations.models import BotState, ConversationStatus

# States where the bot stays silent and text passes through to an operator.
PASSTHROUGH_STATES = frozenset({BotState.AWAITING_FOLLOWUP, BotState.FORWARDED})

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


class TriageBot(BotEngine):
    """Greets new customers with a numbered menu and files them under a tab.

    ``transition`` is pure: it reads only its arguments and the configured
    reply texts, so one instance can be shared across conversations.
    """

    def __init__(self, messages: BotMessages | None = None) -> None:
        self.messages = messages or BotMessages()
        self._choices: dict[int, BotTransition] = {
            1: BotTransition(
                next_state=BotState.AWAITING_FOLLOWUP,
                reply_text=self.messages.ticket_opening,
                new_status=ConversationStatus.TICKET_OPENING,
            ),
            2: BotTransition(
                next_state=BotState.AWAITING_FOLLOWUP,
                reply_text=self.messages.status_inquiry,
                new_status=ConversationStatus.STATUS_INQUIRY,
            ),
            3: BotTransition(
                next_state=BotState.FORWARDED,
                reply_text=self.messages.info_forwarding,
                new_status=ConversationStatus.INFO_QUESTIONS,
            ),
        }

    def describe(self) -> str:
        return "Numbered-menu triage bot"

    def transition(
        self,
        state: BotState,
        status_before: ConversationStatus,
        inbound_text: str,
    ) -> BotTransition:
        if state in PASSTHROUGH_STATES:
            return BotTransition(next_state=state)

        if state is BotState.AWAITING_CHOICE:
            choice = _parse_choice(inbound_text)
            outcome = self._choices.get(choice) if choice is not None else None
            if outcome is not None:
                return outcome
            return BotTransition(
                next_state=BotState.AWAITING_CHOICE,
                reply_text=f"{self.messages.invalid_option}\n\n{self.messages.welcome}",
            )

        return BotTransition(
            next_state=BotState.AWAITING_CHOICE,
            reply_text=self.messages.welcome,
            new_status=ConversationStatus.AWAITING_RESPONSE,
        )


def _parse_choice(text: str) -> int | None:
    """Read the leading integer, so "1." or "2 - status" still pick an option."""

    match = _LEADING_INT.match(text or "")
    return int(match.group(1)) if match else None
