"""Outbound message dispatch through the WhatsApp Cloud API."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Union

import httpx

logger = logging.getLogger("relay.outbound")


@dataclass(frozen=True, slots=True)
class SendSuccess:
    message_id: str

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class SendFailure:
    """Typed failure returned instead of raising.

    ``reason`` is one of ``not_configured``, ``timeout``, ``transport_error``,
    ``http_error`` or ``bad_response``.
    """

    reason: str
    detail: str = ""

    @property
    def ok(self) -> bool:
        return False


SendResult = Union[SendSuccess, SendFailure]


def build_text_payload(to: str, text: str) -> dict[str, Any]:
    return {
        "messaging_product": "whatsapp",
        "recipient_type": "individual",
        "to": to,
        "type": "text",
        "text": {"body": text},
    }


class OutboundDispatcher(ABC):
    """Sends text to a customer and reports the provider message id."""

    @abstractmethod
    async def send(self, customer_id: str, text: str) -> SendResult:
        """Send ``text`` to ``customer_id``; never raises for remote failures."""


class WhatsAppDispatcher(OutboundDispatcher):
    """Single POST per send, bounded by ``timeout``, no retries."""

    def __init__(
        self,
        *,
        access_token: str | None,
        phone_number_id: str | None,
        base_url: str = "https://graph.facebook.com",
        api_version: str = "v19.0",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._access_token = access_token
        self._phone_number_id = phone_number_id
        self._base_url = base_url.rstrip("/")
        self._api_version = api_version
        self._timeout = timeout
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self._access_token and self._phone_number_id)

    @property
    def url(self) -> str:
        return f"{self._base_url}/{self._api_version}/{self._phone_number_id}/messages"

    async def send(self, customer_id: str, text: str) -> SendResult:
        if not self.configured:
            logger.error("Outbound send to %s skipped: WhatsApp credentials are not configured", customer_id)
            return SendFailure("not_configured", "access token or phone number id missing")

        headers = {
            "Authorization": f"Bearer {self._access_token}",
            "Content-Type": "application/json",
        }
        payload = build_text_payload(customer_id, text)

        try:
            # httpx timeouts are per phase; wait_for bounds the whole call.
            data = await asyncio.wait_for(self._post(headers, payload), timeout=self._timeout)
        except (httpx.TimeoutException, asyncio.TimeoutError) as exc:
            logger.warning("Outbound send to %s timed out after %ss", customer_id, self._timeout)
            return SendFailure("timeout", str(exc) or "timed out")
        except httpx.HTTPStatusError as exc:
            logger.error(
                "Outbound send to %s rejected with %s: %s",
                customer_id,
                exc.response.status_code,
                exc.response.text,
            )
            return SendFailure("http_error", f"status {exc.response.status_code}")
        except httpx.HTTPError as exc:
            logger.error("Outbound send to %s failed: %s", customer_id, exc)
            return SendFailure("transport_error", str(exc))
        except ValueError as exc:
            logger.error("Outbound send to %s returned a non-JSON body", customer_id)
            return SendFailure("bad_response", str(exc))

        message_id = _first_message_id(data)
        if not message_id:
            logger.error("Outbound send to %s returned no message id: %s", customer_id, data)
            return SendFailure("bad_response", "response carried no message id")

        logger.info("Message %s sent to %s", message_id, customer_id)
        return SendSuccess(message_id)

    async def _post(self, headers: dict[str, str], payload: dict[str, Any]) -> Any:
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.post(self.url, headers=headers, json=payload)
            response.raise_for_status()
            return response.json()


def _first_message_id(data: Any) -> str | None:
    if not isinstance(data, dict):
        return None
    messages = data.get("messages")
    if not isinstance(messages, list) or not messages or not isinstance(messages[0], dict):
        return None
    message_id = messages[0].get("id")
    return str(message_id) if message_id else None
