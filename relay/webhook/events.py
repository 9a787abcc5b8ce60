"""Normalized webhook events."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Union


@dataclass(frozen=True, slots=True)
class InboundMessage:
    customer_id: str
    text: str
    provider_message_id: str
    arrival_time: datetime
    display_name: str | None = None


@dataclass(frozen=True, slots=True)
class DeliveryStatus:
    customer_id: str
    provider_message_id: str
    status_value: str
    event_time: datetime


WebhookEvent = Union[InboundMessage, DeliveryStatus]
