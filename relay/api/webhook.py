"""Provider webhook routes."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import PlainTextResponse

from relay.core.config import Settings
from relay.core.errors import AuthenticationFailure, MalformedPayload
from relay.core.metrics import MetricsCollector
from relay.core.security import verify_signature
from relay.webhook.ingestor import WebhookIngestor
from relay.webhook.parser import decode_body, parse_envelope

logger = logging.getLogger("relay.api.webhook")


def create_webhook_router(
    settings: Settings,
    ingestor: WebhookIngestor,
    metrics: MetricsCollector,
) -> APIRouter:
    router = APIRouter(prefix="/webhook", tags=["webhook"])

    @router.get("/whatsapp", response_class=PlainTextResponse)
    async def verify_subscription(request: Request) -> PlainTextResponse:
        """Answer the provider's subscription handshake."""

        params = request.query_params
        mode = params.get("hub.mode") or params.get("mode")
        token = params.get("hub.verify_token") or params.get("verify_token")
        challenge = params.get("hub.challenge") or params.get("challenge") or ""

        if not mode or not token:
            logger.warning("Webhook verification request without mode or token")
            raise HTTPException(status_code=400, detail="mode and verify_token are required")
        if mode != "subscribe" or not settings.whatsapp_verify_token or token != settings.whatsapp_verify_token:
            logger.warning("Webhook verification failed: token mismatch")
            raise HTTPException(status_code=403, detail="verification failed")

        logger.info("Webhook subscription verified")
        return PlainTextResponse(challenge)

    @router.post("/whatsapp")
    async def receive_events(request: Request) -> dict:
        """Verify, parse and enqueue a provider event batch."""

        raw_body = await request.body()
        signature = request.headers.get("x-hub-signature-256") or request.headers.get("x-signature-256")
        if not verify_signature(raw_body, signature, settings.app_secret):
            raise AuthenticationFailure("missing or invalid signature")

        try:
            payload = decode_body(raw_body)
        except MalformedPayload as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

        if payload.get("object") != settings.webhook_object:
            logger.warning("Ignoring webhook for object %r", payload.get("object"))
            raise HTTPException(status_code=404, detail="unexpected object")

        try:
            events = parse_envelope(payload, on_drop=metrics.record_dropped)
        except MalformedPayload as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

        accepted = ingestor.submit(events)
        return {"status": "accepted", "events": accepted}

    return router
