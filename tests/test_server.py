"""End-to-end tests for the FastAPI signaling app."""

from __future__ import annotations

from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from signalmesh.api.server import create_app
from signalmesh.services import SignalingHub


@pytest.fixture
def client() -> Iterator[TestClient]:
    app = create_app(hub=SignalingHub())
    with TestClient(app) as c:
        yield c


def _register(ws, device_id: str, **peer_info) -> dict:
    ws.send_json({"type": "register", "data": {"device_id": device_id, "peer_info": peer_info}})
    return ws.receive_json()


class TestMonitoring:
    def test_health(self, client: TestClient) -> None:
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    def test_stats_empty(self, client: TestClient) -> None:
        body = client.get("/stats").json()
        assert body["total_peers"] == 0
        assert body["online_peers"] == 0
        assert body["peers"] == []
        assert body["server_uptime"] >= 0
        assert body["memory_usage"]["rss"] > 0

    def test_metrics_text(self, client: TestClient) -> None:
        resp = client.get("/metrics")
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/plain")
        assert "signalmesh_peers_online 0.0" in resp.text
        assert "signalmesh_uptime_seconds" in resp.text

    def test_stats_includes_counters(self, client: TestClient) -> None:
        with client.websocket_connect("/") as ws:
            _register(ws, "A")
        metrics = client.get("/stats").json()["metrics"]
        assert metrics["counters"]["messages_register_total"] == 1.0
        assert metrics["uptime_seconds"] >= 0

    def test_peer_lookup(self, client: TestClient) -> None:
        with client.websocket_connect("/") as ws:
            _register(ws, "A", capabilities=["gpu"], platform="wasm")
            body = client.get("/peers/A").json()
            assert body["device_id"] == "A"
            assert body["capabilities"] == ["gpu"]
            assert body["platform"] == "wasm"
            assert body["status"] == "online"

    def test_peer_lookup_unknown(self, client: TestClient) -> None:
        resp = client.get("/peers/ghost")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "SIG_E003"

    def test_unknown_path(self, client: TestClient) -> None:
        assert client.get("/nope").status_code == 404


class TestSignalingChannel:
    def test_register_reply(self, client: TestClient) -> None:
        with client.websocket_connect("/") as ws:
            reply = _register(ws, "A", capabilities=["memory_sharing"])
        assert reply["type"] == "registered"
        assert reply["data"]["device_id"] == "A"
        assert reply["data"]["peer_count"] == 1

    def test_ws_alias_path(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as ws:
            assert _register(ws, "A")["type"] == "registered"

    def test_bad_frames_keep_connection_open(self, client: TestClient) -> None:
        with client.websocket_connect("/") as ws:
            ws.send_text("not json")
            err = ws.receive_json()
            assert err["type"] == "error"
            assert err["data"]["code"] == "SIG_E001"
            assert err["message"] == "Invalid JSON format"

            ws.send_bytes(b"\x01\x02")
            assert ws.receive_json()["data"]["code"] == "SIG_E001"

            ws.send_json({"type": "teleport", "data": {}})
            assert ws.receive_json()["data"]["code"] == "SIG_E002"

            assert _register(ws, "A")["type"] == "registered"

    def test_discover_and_signal(self, client: TestClient) -> None:
        with client.websocket_connect("/") as a, client.websocket_connect("/") as b:
            _register(a, "A")
            _register(b, "B", capabilities=["memory_sharing"])

            joined = a.receive_json()
            assert joined["type"] == "peer_joined"
            assert joined["data"]["device_id"] == "B"

            a.send_json(
                {
                    "type": "discover",
                    "data": {"filters": {"required_capabilities": ["memory_sharing"]}},
                }
            )
            result = a.receive_json()
            assert result["type"] == "discovery_result"
            assert [p["device_id"] for p in result["data"]["peers"]] == ["B"]

            offer = {"type": "offer", "sdp": "v=0"}
            a.send_json(
                {
                    "type": "signal",
                    "data": {"target_device_id": "B", "signaling_data": offer},
                }
            )
            signal = b.receive_json()
            assert signal["type"] == "webrtc_signal"
            assert signal["data"]["from_device_id"] == "A"
            assert signal["data"]["signaling_data"] == offer

            a.send_json({"type": "heartbeat", "data": {}})
            ack = a.receive_json()
            assert ack["type"] == "heartbeat_ack"
            assert ack["data"]["online_count"] == 2

    def test_disconnect_marks_peer_offline(self, client: TestClient) -> None:
        with client.websocket_connect("/") as a:
            _register(a, "A")
            with client.websocket_connect("/") as b:
                _register(b, "B")
                assert a.receive_json()["type"] == "peer_joined"
                assert client.get("/stats").json()["online_peers"] == 2

            left = a.receive_json()
            assert left["type"] == "peer_left"
            assert left["data"] == {"device_id": "B", "total_peers": 1, "reason": "disconnect"}

            stats = client.get("/stats").json()
            assert stats["total_peers"] == 2
            assert stats["online_peers"] == 1
            assert [p["device_id"] for p in stats["peers"]] == ["A"]
