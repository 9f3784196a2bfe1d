"""
Relay API Tests
===============

HTTP and WebSocket surface of the relay, through FastAPI's TestClient.
"""

import asyncio
import base64

import pytest
from fastapi.testclient import TestClient

from specbridge.config import Settings
from specbridge.main import WS_CLOSE_TRY_AGAIN_LATER, create_app, serve_subscriber
from specbridge.relay.hub import BroadcastHub


@pytest.fixture
def hub():
    return BroadcastHub()


@pytest.fixture
def client(hub):
    settings = Settings.model_validate({"relay": {"max_frame_bytes": 1024}})
    with TestClient(create_app(settings=settings, hub=hub)) as test_client:
        yield test_client


class TestFrameIngress:
    """Tests for POST /api/frame."""

    def test_accepts_frame(self, client, hub, sample_jpeg):
        response = client.post(
            "/api/frame",
            content=sample_jpeg,
            headers={"Content-Type": "image/jpeg"},
        )

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "frameId": 1}
        assert hub.cache.current.payload == sample_jpeg

    def test_empty_body_rejected(self, client, hub):
        response = client.post("/api/frame", content=b"")

        assert response.status_code == 400
        assert response.json() == {"error": "No frame data"}
        assert not hub.cache.has_frame

    def test_oversized_body_rejected(self, client, hub):
        response = client.post("/api/frame", content=b"x" * 2048)

        assert response.status_code == 413
        assert not hub.cache.has_frame


class TestViolationEndpoints:
    """Tests for the violation side channel endpoints."""

    def test_report_violation(self, client, hub):
        response = client.post(
            "/api/violation",
            json={"category": "gloves", "message": "Gloves required!", "timestamp": 123},
        )

        body = response.json()
        assert response.status_code == 200
        assert body["status"] == "ok"
        assert body["violation"]["category"] == "gloves"
        assert body["violation"]["timestamp"] == 123
        assert "receivedAt" in body["violation"]
        assert hub.current_violation.category == "gloves"

    def test_legacy_type_key(self, client, hub):
        client.post("/api/violation", json={"type": "shoes", "message": "x"})
        assert hub.current_violation.category == "shoes"

    def test_clear(self, client, hub):
        client.post("/api/violation", json={"category": "shoes"})
        response = client.post("/api/violation/clear")

        assert response.json() == {"status": "ok"}
        assert hub.current_violation is None


class TestStatusEndpoints:
    """Tests for / and /api/health."""

    def test_root(self, client):
        body = client.get("/").json()
        assert body["status"] == "running"
        assert body["service"] == "SpecBridge Relay"

    def test_health(self, client, sample_jpeg):
        client.post("/api/frame", content=sample_jpeg)
        body = client.get("/api/health").json()

        assert body == {
            "status": "ok",
            "hasFrame": True,
            "frameCount": 1,
            "clients": 0,
            "streamClients": 0,
            "droppedSubscribers": 0,
            "currentViolation": None,
        }


class TestPushSubscription:
    """Tests for WS /ws."""

    def test_late_joiner_receives_current_frame(self, client, sample_jpeg):
        client.post("/api/frame", content=b"first")
        client.post("/api/frame", content=sample_jpeg)

        with client.websocket_connect("/ws") as ws:
            message = ws.receive_json()

        assert message["type"] == "frame"
        assert message["frameId"] == 2
        assert base64.b64decode(message["data"]) == sample_jpeg

    def test_frames_and_violations_in_order(self, client, hub):
        with client.websocket_connect("/ws") as ws:
            client.post("/api/frame", content=b"A")
            client.post("/api/violation", json={"category": "both", "message": "m"})
            client.post("/api/frame", content=b"B")
            client.post("/api/violation/clear")

            kinds = [ws.receive_json()["type"] for _ in range(4)]
            assert client.get("/api/health").json()["clients"] == 1

        assert kinds == ["frame", "violation", "frame", "violation_clear"]

    def test_disconnect_unsubscribes(self, client, hub):
        with client.websocket_connect("/ws"):
            pass
        client.post("/api/frame", content=b"after")

        assert hub.cache.current.payload == b"after"
        with client.websocket_connect("/ws") as ws:
            assert ws.receive_json()["frameId"] == 1


class StalledWebSocket:
    """Accepted socket whose writes block until released."""

    client = ("viewer.test", 50000)

    def __init__(self):
        self.sent = []
        self.close_code = None
        self.release = asyncio.Event()
        self.gone = asyncio.Event()

    async def send_text(self, message):
        self.sent.append(message)
        await self.release.wait()

    async def receive(self):
        await self.gone.wait()
        return {"type": "websocket.disconnect"}

    async def close(self, code=1000):
        self.close_code = code


class TestServeSubscriber:
    """Tests for the per-connection subscriber loop."""

    def test_blocked_sink_closed_with_try_again_later(self):
        """A socket stuck writing one frame is closed when the next frame is published."""

        async def scenario():
            hub = BroadcastHub()
            websocket = StalledWebSocket()
            hub.publish(b"A")

            serving = asyncio.create_task(serve_subscriber(websocket, hub))
            await asyncio.sleep(0.01)
            connected = hub.subscriber_count

            hub.publish(b"B")
            await asyncio.wait_for(serving, timeout=1.0)
            return hub, websocket, connected

        hub, websocket, connected = asyncio.run(scenario())
        assert connected == 1
        assert websocket.close_code == WS_CLOSE_TRY_AGAIN_LATER
        assert len(websocket.sent) == 1
        assert hub.subscriber_count == 0
        assert hub.dropped_count == 1

    def test_client_disconnect_unsubscribes(self):
        async def scenario():
            hub = BroadcastHub()
            websocket = StalledWebSocket()
            serving = asyncio.create_task(serve_subscriber(websocket, hub))
            await asyncio.sleep(0.01)
            websocket.gone.set()
            await asyncio.wait_for(serving, timeout=1.0)
            return hub, websocket

        hub, websocket = asyncio.run(scenario())
        assert hub.subscriber_count == 0
        assert hub.dropped_count == 0
        assert websocket.close_code is None
