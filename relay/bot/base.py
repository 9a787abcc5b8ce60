"""Bot engine abstract base class."""

from __future__ import annotations

from abc import ABC, abstractmethod

from relay.bot.types import BotTransition
from relay.conversations.models import BotState, ConversationStatus


class BotEngine(ABC):
    """Decides the automated reply for an inbound customer text."""

    @abstractmethod
    def transition(
        self,
        state: BotState,
        status_before: ConversationStatus,
        inbound_text: str,
    ) -> BotTransition:
        """Return the next bot state, optional reply and optional status change."""

    @abstractmethod
    def describe(self) -> str:
        """Human-readable summary of bot strategy."""
