"""End-to-end tests for the WebSocket endpoint over a scripted broker."""

import pytest
from fastapi.testclient import TestClient
from fakes import FAST_TIMEOUTS, VIC_PAYLOAD, FakeBroker, Script

from quote_gateway.main import create_app
from quote_gateway.quotes.service import QuoteService

CREDS = {"investorToken": "t1", "investorId": "i1"}


@pytest.fixture
def broker() -> FakeBroker:
    return FakeBroker(Script(messages=[VIC_PAYLOAD]))


@pytest.fixture
def client(broker, gateway_settings):
    service = QuoteService(broker_factory=broker, timeouts=FAST_TIMEOUTS, batch_delay=0.0)
    app = create_app(gateway_settings, service=service)
    with TestClient(app) as test_client:
        yield test_client


class TestWebSocketEndpoint:
    """Tests for the client-facing protocol."""

    def test_welcome_message(self, client):
        with client.websocket_connect("/") as ws:
            assert ws.receive_json() == {
                "type": "connected",
                "message": "Connected to WSS server",
                "version": "1.0.0",
            }

    def test_ping(self, client):
        with client.websocket_connect("/") as ws:
            ws.receive_json()
            ws.send_json({"type": "ping"})

            assert ws.receive_json()["type"] == "pong"

    def test_invalid_json(self, client):
        with client.websocket_connect("/") as ws:
            ws.receive_json()
            ws.send_text("{not json")

            event = ws.receive_json()
            assert event["type"] == "error"
            assert event["error"]

    def test_binary_frame_is_handled_as_json(self, client):
        with client.websocket_connect("/") as ws:
            ws.receive_json()
            ws.send_bytes(b'{"type": "ping"}')

            assert ws.receive_json()["type"] == "pong"

    def test_binary_frame_with_invalid_json(self, client):
        with client.websocket_connect("/") as ws:
            ws.receive_json()
            ws.send_bytes(b"\xff\xfe not json")

            event = ws.receive_json()
            assert event["type"] == "error"

            # The connection stays open after a bad frame
            ws.send_json({"type": "ping"})
            assert ws.receive_json()["type"] == "pong"

    def test_subscribe(self, client, broker):
        with client.websocket_connect("/") as ws:
            ws.receive_json()
            ws.send_json({"type": "subscribe", "code": "VIC", **CREDS})

            received = [ws.receive_json() for _ in range(3)]

        assert [e["type"] for e in received] == ["connected", "subscribed", "price_update"]
        assert received[2]["data"]["symbol"] == "VIC"
        assert broker.connections[0].close_calls == 1

    def test_subscribe_batch(self, client):
        with client.websocket_connect("/") as ws:
            ws.receive_json()
            ws.send_json({"type": "subscribe_batch", "codes": ["VIC", "FPT"], **CREDS})

            received = []
            while not received or received[-1]["type"] != "batch_complete":
                received.append(ws.receive_json())

        assert received[0] == {"type": "batch_start", "total": 2}
        assert received[-1] == {"type": "batch_complete", "total": 2, "success": 2, "failed": 0}
        assert len([e for e in received if e["type"] == "price_update"]) == 2

    def test_health_counts_connection(self, client):
        with client.websocket_connect("/") as ws:
            ws.receive_json()
            ws.send_json({"type": "health"})

            event = ws.receive_json()

        assert event["status"] == "ok"
        assert event["connections"] == 1

