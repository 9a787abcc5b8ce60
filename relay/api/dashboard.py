"""Dashboard query endpoint and realtime WebSocket channel."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from relay.conversations.store import ConversationStore
from relay.core.errors import SubscriptionOverflow
from relay.core.metrics import MetricsCollector
from relay.realtime.broadcaster import Broadcaster, Delta, EventName, Subscription
from relay.realtime.gateway import DashboardGateway, DashboardSession

logger = logging.getLogger("relay.api.dashboard")


def create_dashboard_router(
    store: ConversationStore,
    broadcaster: Broadcaster,
    gateway: DashboardGateway,
    metrics: MetricsCollector,
) -> APIRouter:
    router = APIRouter(tags=["dashboard"])

    @router.get("/api/conversations")
    async def list_conversations() -> list[dict[str, Any]]:
        """Return every conversation for clients without a realtime channel."""

        return list(store.snapshot().values())

    @router.websocket("/ws/dashboard")
    async def dashboard_channel(websocket: WebSocket) -> None:
        await websocket.accept()

        # Subscribe and snapshot in the same loop step so no delta is missed.
        subscription = broadcaster.subscribe()
        session = DashboardSession(subscription, operator_id=websocket.query_params.get("operator"))
        session.notify(Delta(EventName.SNAPSHOT, {"conversations": list(store.snapshot().values())}))
        metrics.session_opened()
        logger.info("Dashboard session %s connected (operator=%s)", session.id, session.operator_id)

        writer = asyncio.create_task(_forward(websocket, subscription))
        reader = asyncio.create_task(_read(websocket, session, gateway))
        try:
            done, _ = await asyncio.wait({reader, writer}, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                exc = task.exception()
                if isinstance(exc, SubscriptionOverflow):
                    logger.warning("Dashboard session %s fell behind; closing it", session.id)
                    await websocket.close(code=status.WS_1013_TRY_AGAIN_LATER)
                elif isinstance(exc, WebSocketDisconnect):
                    logger.info("Dashboard session %s disconnected", session.id)
                elif exc is not None:
                    raise exc
        finally:
            broadcaster.unsubscribe(subscription)
            for task in (reader, writer):
                task.cancel()
            await asyncio.gather(reader, writer, return_exceptions=True)
            metrics.session_closed()

    return router


async def _read(websocket: WebSocket, session: DashboardSession, gateway: DashboardGateway) -> None:
    while True:
        raw = await websocket.receive_text()
        try:
            frame = json.loads(raw)
        except json.JSONDecodeError:
            session.error("frame is not valid JSON")
            continue
        gateway.dispatch(session, frame)


async def _forward(websocket: WebSocket, subscription: Subscription) -> None:
    while True:
        delta = await subscription.next()
        await websocket.send_json(delta.to_frame())
