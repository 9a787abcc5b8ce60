"""Lightweight in-memory metrics collector."""

from __future__ import annotations

import threading
from collections import Counter
from dataclasses import dataclass
from typing import Dict


@dataclass
class MetricSnapshot:
    inbound_messages: int
    delivery_statuses: int
    dropped_events: Dict[str, int]
    outbound_sends: Dict[str, int]
    active_sessions: int


class MetricsCollector:
    """Thread-safe counter storage for basic service metrics."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._inbound_messages = 0
        self._delivery_statuses = 0
        self._dropped: Counter[str] = Counter()
        self._sends: Counter[str] = Counter()
        self._active_sessions = 0

    def record_inbound(self) -> None:
        with self._lock:
            self._inbound_messages += 1

    def record_delivery_status(self) -> None:
        with self._lock:
            self._delivery_statuses += 1

    def record_dropped(self, reason: str) -> None:
        with self._lock:
            self._dropped[reason] += 1

    def record_send(self, outcome: str) -> None:
        """Count one outbound send by outcome (``ok`` or a failure reason)."""

        with self._lock:
            self._sends[outcome] += 1

    def session_opened(self) -> None:
        with self._lock:
            self._active_sessions += 1

    def session_closed(self) -> None:
        with self._lock:
            self._active_sessions = max(0, self._active_sessions - 1)

    def snapshot(self) -> MetricSnapshot:
        with self._lock:
            return MetricSnapshot(
                inbound_messages=self._inbound_messages,
                delivery_statuses=self._delivery_statuses,
                dropped_events=dict(self._dropped),
                outbound_sends=dict(self._sends),
                active_sessions=self._active_sessions,
            )
