"""Pytest unit test fixtures."""

import pytest

from relay.bot.triage import TriageBot
from relay.conversations.store import InMemoryConversationStore
from relay.core.metrics import MetricsCollector
from relay.realtime.broadcaster import Broadcaster


@pytest.fixture()
def broadcaster():
    return Broadcaster()


@pytest.fixture()
def store(broadcaster):
    return InMemoryConversationStore(TriageBot(), broadcaster)


@pytest.fixture()
def metrics():
    return MetricsCollector()
