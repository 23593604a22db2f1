from __future__ import annotations

import base64
import json
import time

from fastapi.testclient import TestClient
from twilio.request_validator import RequestValidator

from api.dependencies import get_app_settings, get_registry
from bridge.registry import SessionRegistry
from bridge.session import CallState
from fakes import FakeRealtime, make_settings


def _poll(predicate, timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        time.sleep(0.01)


def test_incoming_call_returns_connect_stream_twiml(app):
    app.dependency_overrides[get_app_settings] = lambda: make_settings()

    with TestClient(app) as client:
        resp = client.post("/incoming-call", data={"CallSid": "CA111"})

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("application/xml")
    assert "<Connect><Stream url=\"wss://testserver/media-stream\" /></Connect>" in resp.text


def test_incoming_call_uses_configured_ws_endpoint(app):
    app.dependency_overrides[get_app_settings] = lambda: make_settings(
        ws_endpoint="wss://bridge.example.com/media-stream?a=1&b=2"
    )

    with TestClient(app) as client:
        resp = client.post("/incoming-call", data={"CallSid": "CA111"})

    assert resp.status_code == 200
    assert "url=\"wss://bridge.example.com/media-stream?a=1&amp;b=2\"" in resp.text


def test_incoming_call_rejects_bad_signature(app):
    app.dependency_overrides[get_app_settings] = lambda: make_settings(twilio_auth_token="secret")

    with TestClient(app) as client:
        missing = client.post("/incoming-call", data={"CallSid": "CA111"})
        forged = client.post(
            "/incoming-call",
            data={"CallSid": "CA111"},
            headers={"X-Twilio-Signature": "forged"},
        )

    assert missing.status_code == 403
    assert forged.status_code == 403


def test_incoming_call_accepts_valid_signature(app):
    app.dependency_overrides[get_app_settings] = lambda: make_settings(twilio_auth_token="secret")
    params = {"CallSid": "CA111", "From": "+41790000000"}
    signature = RequestValidator("secret").compute_signature("http://testserver/incoming-call", params)

    with TestClient(app) as client:
        resp = client.post("/incoming-call", data=params, headers={"X-Twilio-Signature": signature})

    assert resp.status_code == 200
    assert "<Stream" in resp.text


def test_health_reports_active_calls(app):
    registry = SessionRegistry(make_settings(), realtime_factory=lambda settings: FakeRealtime())
    app.dependency_overrides[get_registry] = lambda: registry

    with TestClient(app) as client:
        resp = client.get("/")

    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "active_calls": 0}


def test_media_stream_websocket_relays_until_stop(app):
    peers: list[FakeRealtime] = []

    def factory(settings):
        peer = FakeRealtime()
        peers.append(peer)
        return peer

    registry = SessionRegistry(make_settings(), realtime_factory=factory)
    app.dependency_overrides[get_registry] = lambda: registry
    silence = base64.b64encode(b"\xFF" * 160).decode("ascii")

    with TestClient(app) as client:
        with client.websocket_connect("/media-stream") as ws:
            ws.send_text(json.dumps({"event": "connected", "protocol": "Call", "version": "1.0.0"}))
            ws.send_text(json.dumps({"event": "start", "start": {"streamSid": "MZ42", "callSid": "CA42"}}))
            _poll(lambda: bool(registry.sessions()) and registry.sessions()[0].state is CallState.STREAMING)

            ws.send_text(json.dumps({"event": "media", "media": {"track": "inbound", "payload": silence}}))
            _poll(lambda: len(peers[0].events_of("input_audio_buffer.append")) == 1)

            ws.send_text(json.dumps({"event": "stop", "streamSid": "MZ42"}))
            message = ws.receive()
            assert message["type"] == "websocket.close"

        _poll(lambda: registry.active_sessions == 0)

    assert len(peers) == 1
    assert peers[0].close_calls == 1
    assert [event["type"] for event in peers[0].sent[:2]] == ["session.update", "response.create"]
