from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from relay.core.config import Settings
from relay.core.security import compute_signature
from relay.main import create_app
from relay.outbound.dispatcher import OutboundDispatcher, SendFailure, SendResult, SendSuccess

APP_SECRET = "test-app-secret"
VERIFY_TOKEN = "verify-me"


class FakeDispatcher(OutboundDispatcher):
    """Records sends; fails with ``fail_with`` when set; waits on ``gate`` when set."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []
        self.fail_with: str | None = None
        self.gate: asyncio.Event | None = None

    async def send(self, customer_id: str, text: str) -> SendResult:
        if self.gate is not None:
            await self.gate.wait()
        self.sent.append((customer_id, text))
        if self.fail_with:
            return SendFailure(self.fail_with)
        return SendSuccess(f"wamid.out.{len(self.sent)}")


@pytest.fixture(scope="session")
def fixtures_dir() -> Path:
    return Path(__file__).parent / "fixtures"


@pytest.fixture
def inbound_text_payload(fixtures_dir: Path) -> dict:
    return json.loads((fixtures_dir / "inbound_text.json").read_text(encoding="utf-8"))


@pytest.fixture
def mixed_batch_payload(fixtures_dir: Path) -> dict:
    return json.loads((fixtures_dir / "mixed_batch.json").read_text(encoding="utf-8"))


@pytest.fixture
def delivery_status_payload(fixtures_dir: Path) -> dict:
    return json.loads((fixtures_dir / "delivery_status.json").read_text(encoding="utf-8"))


@pytest.fixture
def dispatcher() -> FakeDispatcher:
    return FakeDispatcher()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        app_secret=APP_SECRET,
        whatsapp_verify_token=VERIFY_TOKEN,
        whatsapp_access_token="token",
        whatsapp_phone_number_id="106540352242922",
    )


@pytest.fixture
def app(settings: Settings, dispatcher: FakeDispatcher):
    return create_app(settings, dispatcher=dispatcher)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def signed():
    """Return (body, headers) for a payload signed with the test secret."""

    def _sign(payload: dict, secret: str = APP_SECRET) -> tuple[bytes, dict[str, str]]:
        body = json.dumps(payload).encode("utf-8")
        headers = {
            "Content-Type": "application/json",
            "X-Hub-Signature-256": compute_signature(body, secret),
        }
        return body, headers

    return _sign
