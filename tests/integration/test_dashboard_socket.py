import pytest
from fastapi import status
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect


def post_signed(client, signed, payload) -> None:
    body, headers = signed(payload)
    response = client.post("/webhook/whatsapp", content=body, headers=headers)
    assert response.status_code == 200


def test_session_receives_snapshot_then_deltas(client, signed, inbound_text_payload):
    with client.websocket_connect("/ws/dashboard?operator=ana") as ws:
        snapshot = ws.receive_json()
        assert snapshot == {"event": "snapshot", "data": {"conversations": []}}

        post_signed(client, signed, inbound_text_payload)

        frames = [ws.receive_json() for _ in range(3)]
        assert [frame["event"] for frame in frames] == ["conversation_updated"] * 3
        sizes = [len(frame["data"]["conversation"]["messages"]) for frame in frames]
        assert sizes == [0, 1, 2]
        assert frames[-1]["data"]["conversation"]["status"] == "awaiting_response"


def test_operator_actions_reach_all_sessions(client, app, signed, inbound_text_payload, dispatcher):
    post_signed(client, signed, inbound_text_payload)
    client.portal.call(app.state.ingestor.join)
    customer_id = "5511999990001"

    with client.websocket_connect("/ws/dashboard?operator=ana") as first, client.websocket_connect(
        "/ws/dashboard?operator=bruno"
    ) as second:
        for ws in (first, second):
            snapshot = ws.receive_json()
            assert snapshot["event"] == "snapshot"
            assert snapshot["data"]["conversations"][0]["customer_id"] == customer_id

        first.send_json({"event": "send_message", "data": {"customer_id": customer_id, "text": "On it"}})
        for ws in (first, second):
            frame = ws.receive_json()
            assert frame["event"] == "conversation_updated"
            conversation = frame["data"]["conversation"]
            assert conversation["messages"][-1]["sender"] == "operator"
            assert conversation["messages"][-1]["operator_id"] == "ana"
            assert conversation["assigned_operator"] == "ana"
            assert conversation["bot_state"] == "forwarded"

        second.send_json({"event": "change_status", "data": {"customer_id": customer_id, "new_status": "in_progress"}})
        for ws in (first, second):
            assert ws.receive_json() == {
                "event": "status_changed",
                "data": {"customer_id": customer_id, "status": "in_progress"},
            }

        assert client.get("/metrics").json()["active_sessions"] == 2

    assert dispatcher.sent[-1] == (customer_id, "On it")


def test_unknown_customer_only_notifies_originator(client, app):
    with client.websocket_connect("/ws/dashboard") as first, client.websocket_connect("/ws/dashboard") as second:
        first.receive_json()
        second.receive_json()

        first.send_json({"event": "send_message", "data": {"customer_id": "ghost", "text": "Hello?"}})
        notice = first.receive_json()
        assert notice["event"] == "error"
        assert notice["data"]["customer_id"] == "ghost"

        # The next frame the other session sees is its own notice, not a broadcast.
        second.send_text("not json")
        assert second.receive_json() == {"event": "error", "data": {"message": "frame is not valid JSON"}}

    assert client.get("/api/conversations").json() == []


def test_failed_send_is_reported_to_originator(client, app, signed, inbound_text_payload, dispatcher):
    post_signed(client, signed, inbound_text_payload)
    client.portal.call(app.state.ingestor.join)
    dispatcher.fail_with = "timeout"

    with client.websocket_connect("/ws/dashboard") as ws:
        ws.receive_json()
        ws.send_json({"event": "send_message", "data": {"customer_id": "5511999990001", "text": "Hi"}})
        frame = ws.receive_json()

    assert frame == {
        "event": "send_failed",
        "data": {"customer_id": "5511999990001", "text": "Hi", "reason": "timeout"},
    }
    messages = client.get("/api/conversations").json()[0]["messages"]
    assert [message["sender"] for message in messages] == ["customer", "bot"]


def test_session_that_falls_behind_is_closed(settings, dispatcher):
    from relay.main import create_app
    from relay.realtime.broadcaster import Delta, EventName

    app = create_app(settings.model_copy(update={"dashboard_queue_size": 2}), dispatcher=dispatcher)

    async def flood() -> None:
        for index in range(5):
            app.state.broadcaster.publish(
                Delta(EventName.STATUS_CHANGED, {"customer_id": "5511", "status": str(index)})
            )

    with TestClient(app) as client:
        with client.websocket_connect("/ws/dashboard") as ws:
            assert ws.receive_json()["event"] == "snapshot"
            client.portal.call(flood)

            frames = []
            with pytest.raises(WebSocketDisconnect) as excinfo:
                while True:
                    frames.append(ws.receive_json())

        assert excinfo.value.code == status.WS_1013_TRY_AGAIN_LATER
        assert len(frames) <= 2
        assert app.state.broadcaster.subscriber_count == 0
        assert client.get("/metrics").json()["active_sessions"] == 0


def test_ticket_reference_update_reaches_sessions(client, app, signed, inbound_text_payload):
    post_signed(client, signed, inbound_text_payload)
    client.portal.call(app.state.ingestor.join)

    with client.websocket_connect("/ws/dashboard?operator=ana") as ws:
        ws.receive_json()
        ws.send_json(
            {
                "event": "update_ticket_reference",
                "data": {"customer_id": "5511999990001", "ticket_reference": "OS-2024-118"},
            }
        )
        frame = ws.receive_json()

    assert frame["event"] == "conversation_updated"
    assert frame["data"]["conversation"]["ticket_reference"] == "OS-2024-118"
    assert client.get("/api/conversations").json()[0]["ticket_reference"] == "OS-2024-118"
