"""Error taxonomy and exception handling utilities."""

from __future__ import annotations

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger("relay.errors")


class RelayError(Exception):
    """Base class for errors raised by the relay core."""


class AuthenticationFailure(RelayError):
    """Webhook signature missing or invalid."""


class UnknownConversation(RelayError):
    """An operation referenced a customer id the store does not hold."""

    def __init__(self, customer_id: str) -> None:
        super().__init__(f"unknown conversation: {customer_id}")
        self.customer_id = customer_id


class UnsupportedEvent(RelayError):
    """Provider payload shape this service does not handle."""


class MalformedPayload(RelayError):
    """Webhook body could not be parsed."""


class SubscriptionOverflow(RelayError):
    """A dashboard session fell further behind the broadcast than its queue allows."""


class InvalidStatus(RelayError):
    """Status value outside the conversation status enumeration."""

    def __init__(self, value: object) -> None:
        super().__init__(f"invalid status: {value!r}")
        self.value = value


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:  # noqa: D401
    """Return a generic JSON error response while logging the exception."""

    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_error",
            "message": "Something unexpected happened. Please try again later.",
        },
    )


async def authentication_failure_handler(request: Request, exc: AuthenticationFailure) -> JSONResponse:
    """Reject unsigned or wrongly signed webhook deliveries."""

    logger.warning("Rejected %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=403,
        content={"error": "invalid_signature", "message": str(exc)},
    )
