"""Tests for the session server REST endpoints and WebSocket protocol."""

import time

import pytest

try:
    from fastapi.testclient import TestClient
    from starlette.websockets import WebSocketDisconnect
    _HAS_TESTCLIENT = True
except ImportError:
    _HAS_TESTCLIENT = False

try:
    from gacha_engine.server import app, state
    from gacha_engine.session import GestureSession
    _HAS_SERVER = True
except ImportError:
    _HAS_SERVER = False


pytestmark = pytest.mark.skipif(
    not (_HAS_TESTCLIENT and _HAS_SERVER),
    reason="fastapi not installed"
)

SHAKE = {"type": "motion", "acceleration": {"x": 35.0, "y": 0.0, "z": 0.0}}


@pytest.fixture
def client():
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c


def receive_until(ws, predicate, limit=500):
    for _ in range(limit):
        msg = ws.receive_json()
        if predicate(msg):
            return msg
    raise AssertionError("expected message never arrived")


def snapshot_in(phase):
    return lambda m: m["type"] == "snapshot" and m["phase"] == phase


class TestRESTEndpoints:
    def test_api_status(self, client):
        resp = client.get("/api/status")
        assert resp.status_code == 200
        data = resp.json()
        assert "sessions" in data
        assert "total_gestures" in data
        assert "packs_awarded" in data

    def test_api_modes(self, client):
        resp = client.get("/api/modes")
        assert resp.status_code == 200
        names = [m["name"] for m in resp.json()["modes"]]
        assert "shake" in names
        assert "blow_challenge" in names

    def test_metrics_endpoint(self, client):
        resp = client.get("/metrics")
        assert resp.status_code == 200
        assert "gacha_engine_active_connections" in resp.text


class TestSessionSocket:
    def test_connected_message(self, client):
        with client.websocket_connect("/ws/session?mode=grab") as ws:
            msg = ws.receive_json()
            assert msg["type"] == "connected"
            assert msg["mode"] == "grab"
            assert msg["classifiers"] == ["swing"]
            assert msg["snapshot"]["phase"] == "IDLE"
            assert msg["snapshot"]["progress"] == 0

    def test_audio_disabled_by_query(self, client):
        with client.websocket_connect("/ws/session?mode=both&audio=0") as ws:
            msg = ws.receive_json()
            assert msg["classifiers"] == ["shake"]

    def test_unknown_mode(self, client):
        with client.websocket_connect("/ws/session?mode=juggle") as ws:
            msg = ws.receive_json()
            assert msg["type"] == "error"
            with pytest.raises(WebSocketDisconnect):
                ws.receive_json()

    def test_full_session(self, client):
        before = state.inventory.packs
        with client.websocket_connect("/ws/session?mode=shake_challenge") as ws:
            ws.receive_json()
            ws.send_json(SHAKE)

            gesture = receive_until(ws, lambda m: m["type"] == "gesture")
            assert gesture["kind"] == "shake"
            ready = receive_until(ws, snapshot_in("READY"))
            assert ready["progress"] == 100
            receive_until(ws, snapshot_in("OPENING"))

            ws.send_json({"type": "animation_done"})
            receive_until(ws, snapshot_in("REVEALED"))
            ws.send_json({"type": "collect"})
            receive_until(ws, snapshot_in("COMPLETE"))

        assert state.inventory.packs == before + 1

    def test_restart(self, client):
        with client.websocket_connect("/ws/session?mode=shake_challenge") as ws:
            ws.receive_json()
            ws.send_json(SHAKE)
            receive_until(ws, snapshot_in("READY"))
            ws.send_json({"type": "restart"})
            idle = receive_until(ws, snapshot_in("IDLE"))
            assert idle["progress"] == 0

    def test_ping_and_bad_messages(self, client):
        with client.websocket_connect("/ws/session?mode=shake") as ws:
            ws.receive_json()
            ws.send_json({"type": "ping"})
            assert receive_until(ws, lambda m: m["type"] == "pong")
            ws.send_text("not json")
            assert receive_until(ws, lambda m: m["type"] == "error")
            ws.send_json({"type": "dance"})
            err = receive_until(ws, lambda m: m["type"] == "error")
            assert "dance" in err["message"]

    def test_malformed_samples_keep_session_alive(self, client):
        with client.websocket_connect("/ws/session?mode=shake") as ws:
            ws.receive_json()
            ws.send_json({"type": "motion", "acceleration": [1, 2, 3], "rotationRate": 7})
            ws.send_json({"type": "metering", "metering": "loud"})
            ws.send_text("[1, 2]")
            err = receive_until(ws, lambda m: m["type"] == "error")
            assert "object" in err["message"]
            ws.send_json(SHAKE)
            gesture = receive_until(ws, lambda m: m["type"] == "gesture")
            assert gesture["kind"] == "shake"

    def test_failing_handler_reports_error_and_continues(self, client, monkeypatch):
        def broken(self):
            raise RuntimeError("store offline")

        monkeypatch.setattr(GestureSession, "animation_finished", broken)
        with client.websocket_connect("/ws/session?mode=shake") as ws:
            ws.receive_json()
            ws.send_json({"type": "animation_done"})
            err = receive_until(ws, lambda m: m["type"] == "error")
            assert "animation_done" in err["message"]
            ws.send_json({"type": "ping"})
            assert receive_until(ws, lambda m: m["type"] == "pong")


class TestSessionTeardown:
    def test_disconnect_exits_session(self, client):
        before = set(state.sessions)
        with client.websocket_connect("/ws/session?mode=shake") as ws:
            ws.receive_json()
            (session,) = state.sessions - before
            assert session.active

        deadline = time.monotonic() + 2.0
        while session in state.sessions and time.monotonic() < deadline:
            time.sleep(0.01)
        assert session not in state.sessions
        assert not session.active
        assert client.get("/api/status").json()["sessions"] == len(before)
