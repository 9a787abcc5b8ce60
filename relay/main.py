"""FastAPI application entry point for the WhatsApp operator relay."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from relay.api.dashboard import create_dashboard_router
from relay.api.webhook import create_webhook_router
from relay.bot.triage import TriageBot
from relay.conversations.store import InMemoryConversationStore
from relay.core.config import Settings, get_settings
from relay.core.errors import AuthenticationFailure, authentication_failure_handler, unhandled_exception_handler
from relay.core.logging import configure_logging, request_id_middleware
from relay.core.metrics import MetricsCollector
from relay.outbound.dispatcher import OutboundDispatcher, WhatsAppDispatcher
from relay.realtime.broadcaster import Broadcaster
from relay.realtime.gateway import DashboardGateway
from relay.webhook.ingestor import WebhookIngestor

logger = logging.getLogger("relay.app")


def create_app(
    settings: Settings | None = None,
    dispatcher: OutboundDispatcher | None = None,
) -> FastAPI:
    """Build the service with its own store, bus and workers."""

    settings = settings or get_settings()
    dispatcher = dispatcher or WhatsAppDispatcher(
        access_token=settings.whatsapp_access_token,
        phone_number_id=settings.whatsapp_phone_number_id,
        base_url=settings.graph_api_base_url,
        api_version=settings.graph_api_version,
        timeout=settings.send_timeout_seconds,
    )

    metrics = MetricsCollector()
    broadcaster = Broadcaster(settings.dashboard_queue_size)
    bot = TriageBot()
    store = InMemoryConversationStore(bot, broadcaster)
    ingestor = WebhookIngestor(store, dispatcher, broadcaster, metrics)
    gateway = DashboardGateway(store, dispatcher, metrics)

    app = FastAPI(title=settings.app_name, version="0.1.0", docs_url="/docs")
    app.state.settings = settings
    app.state.store = store
    app.state.broadcaster = broadcaster
    app.state.ingestor = ingestor
    app.state.gateway = gateway
    app.state.metrics = metrics

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.middleware("http")(request_id_middleware)
    app.add_exception_handler(AuthenticationFailure, authentication_failure_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(create_webhook_router(settings, ingestor, metrics))
    app.include_router(create_dashboard_router(store, broadcaster, gateway, metrics))

    @app.on_event("startup")
    async def startup() -> None:
        level = configure_logging(settings.log_level)
        logger.info("Logging configured at %s level for %s environment", logging.getLevelName(level), settings.environment)
        logger.info("Bot engine: %s", bot.describe())
        missing = settings.missing_credentials
        if missing:
            logger.warning(
                "WhatsApp settings not fully configured (%s); the provider integration will not work",
                ", ".join(missing),
            )

    @app.on_event("shutdown")
    async def shutdown() -> None:
        await ingestor.close()
        await gateway.close()

    @app.get("/health", tags=["health"])
    async def health_check() -> dict[str, str]:
        """Return basic service status for monitoring."""

        return {"status": "ok"}

    @app.get("/ready", tags=["health"])
    async def readiness_probe() -> dict[str, Any]:
        """Report whether the provider integration can work end to end."""

        components = {
            "outbound": {"ok": settings.outbound_configured},
            "signature": {"ok": bool(settings.app_secret)},
            "verify_token": {"ok": bool(settings.whatsapp_verify_token)},
        }
        overall = "ok" if all(component["ok"] for component in components.values()) else "degraded"
        return {
            "status": overall,
            "environment": settings.environment,
            "components": components,
            "conversations": len(store),
            "sessions": broadcaster.subscriber_count,
        }

    @app.get("/metrics", tags=["metrics"])
    async def metrics_endpoint() -> dict:
        snapshot = metrics.snapshot()
        return {
            "inbound_messages": snapshot.inbound_messages,
            "delivery_statuses": snapshot.delivery_statuses,
            "dropped_events": snapshot.dropped_events,
            "outbound_sends": snapshot.outbound_sends,
            "active_sessions": snapshot.active_sessions,
        }

    return app


app = create_app()
