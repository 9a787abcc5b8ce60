"""Turn provider webhook envelopes into normalized events."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterator, Mapping
from datetime import datetime, timezone
from typing import Any

from relay.core.errors import MalformedPayload, UnsupportedEvent
from relay.webhook.events import DeliveryStatus, InboundMessage, WebhookEvent

logger = logging.getLogger("relay.webhook.parser")

SUPPORTED_FIELD = "messages"


def decode_body(raw_body: bytes) -> dict[str, Any]:
    """Decode a verified raw body; anything but a JSON object is malformed."""

    try:
        payload = json.loads(raw_body.decode("utf-8")) if raw_body else None
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MalformedPayload(f"invalid JSON payload: {exc}") from exc
    if not isinstance(payload, dict):
        raise MalformedPayload("webhook body must be a JSON object")
    return payload


def parse_envelope(
    payload: Mapping[str, Any],
    on_drop: Callable[[str], None] | None = None,
) -> list[WebhookEvent]:
    """Collect every supported event from ``entry[].changes[].value``.

    Unsupported shapes are logged and reported through ``on_drop``; they never
    stop the remaining events from being parsed.
    """

    entries = payload.get("entry") or []
    if not isinstance(entries, list):
        raise MalformedPayload("`entry` must be a list")

    events: list[WebhookEvent] = []
    for entry in entries:
        changes = entry.get("changes") if isinstance(entry, dict) else None
        if not isinstance(changes, list):
            continue
        for change in changes:
            for item in _iter_change(change):
                if isinstance(item, UnsupportedEvent):
                    logger.info("Dropping unsupported webhook event: %s", item)
                    if on_drop is not None:
                        on_drop(str(item))
                else:
                    events.append(item)
    return events


def _iter_change(change: Any) -> Iterator[WebhookEvent | UnsupportedEvent]:
    if not isinstance(change, dict):
        yield UnsupportedEvent("change is not an object")
        return
    field_name = change.get("field")
    if field_name != SUPPORTED_FIELD:
        yield UnsupportedEvent(f"field {field_name!r}")
        return

    value = change.get("value")
    if not isinstance(value, dict):
        yield UnsupportedEvent("change value is not an object")
        return
    contacts = {
        contact.get("wa_id"): contact
        for contact in _as_list(value.get("contacts"))
        if isinstance(contact, dict) and not isinstance(contact.get("wa_id"), (dict, list))
    }

    for message in _as_list(value.get("messages")):
        yield _guarded(parse_message, message, contacts)

    for status in _as_list(value.get("statuses")):
        yield _guarded(parse_status, status)


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def _guarded(parse: Callable[..., WebhookEvent], *args: Any) -> WebhookEvent | UnsupportedEvent:
    # One odd item becomes a drop; its siblings still parse.
    try:
        return parse(*args)
    except UnsupportedEvent as exc:
        return exc
    except (AttributeError, TypeError, ValueError) as exc:
        kind = parse.__name__.removeprefix("parse_")
        return UnsupportedEvent(f"unexpected {kind} shape: {exc}")


def parse_message(message: Any, contacts: Mapping[str | None, Mapping[str, Any]] | None = None) -> InboundMessage:
    if not isinstance(message, dict):
        raise UnsupportedEvent("message is not an object")
    message_type = message.get("type")
    if message_type != "text":
        raise UnsupportedEvent(f"message type {message_type!r}")

    sender = message.get("from")
    message_id = message.get("id")
    if not sender or not message_id:
        raise UnsupportedEvent("text message without sender or id")

    contact = (contacts or {}).get(sender) or {}
    if not contact and contacts and len(contacts) == 1:
        contact = next(iter(contacts.values()))
    profile = contact.get("profile")
    name = profile.get("name") if isinstance(profile, dict) else None

    text = message.get("text")
    if not isinstance(text, dict):
        raise UnsupportedEvent("text message without a text object")

    return InboundMessage(
        customer_id=str(sender),
        text=str(text.get("body", "")),
        provider_message_id=str(message_id),
        arrival_time=_parse_epoch(message.get("timestamp")),
        display_name=name or None,
    )


def parse_status(status: Any) -> DeliveryStatus:
    if not isinstance(status, dict):
        raise UnsupportedEvent("status is not an object")
    recipient = status.get("recipient_id")
    message_id = status.get("id")
    value = status.get("status")
    if not recipient or not message_id or not value:
        raise UnsupportedEvent("status without recipient, id or value")
    return DeliveryStatus(
        customer_id=str(recipient),
        provider_message_id=str(message_id),
        status_value=str(value),
        event_time=_parse_epoch(status.get("timestamp")),
    )


def _parse_epoch(value: Any) -> datetime:
    if value:
        try:
            return datetime.fromtimestamp(int(value), tz=timezone.utc)
        except (ValueError, TypeError, OverflowError, OSError):
            pass
    return datetime.now(timezone.utc)
