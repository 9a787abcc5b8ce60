"""Bot package exports."""

from .base import BotEngine
from .triage import TriageBot
from .types import BotMessages, BotTransition

__all__ = [
    "BotEngine",
    "BotMessages",
    "BotTransition",
    "TriageBot",
]
