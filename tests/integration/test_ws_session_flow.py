from __future__ import annotations

import json
import time

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from apps.api_gateway.main import app

LOUD_100MS = b"\xe8\x03" * 1600  # PCM16, амплитуда 1000


@pytest.fixture()
def client():
    with TestClient(app) as c:
        yield c


def _create_session(client: TestClient) -> str:
    r = client.post("/v1/sessions")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "success"
    return body["sessionId"]


def _wait_status(client: TestClient, session_id: str, status: str) -> dict:
    deadline = time.monotonic() + 3.0
    while True:
        body = client.get(f"/v1/sessions/{session_id}").json()
        if body["status"] == status or time.monotonic() > deadline:
            return body
        time.sleep(0.02)


def test_health_and_metrics(client) -> None:
    assert client.get("/health").json() == {"ok": True}
    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    assert "transcriber_requests_total" in metrics.text


def test_session_http_endpoints(client) -> None:
    session_id = _create_session(client)

    got = client.get(f"/v1/sessions/{session_id}")
    assert got.status_code == 200
    body = got.json()
    assert body["id"] == session_id
    assert body["status"] == "pending"
    assert body["transcribedText"] is None
    assert body["completedAt"] is None

    listed = client.get("/v1/sessions").json()
    assert session_id in [s["id"] for s in listed]

    missing = client.get("/v1/sessions/does-not-exist")
    assert missing.status_code == 404
    assert missing.json()["detail"]["code"] == "not_found"


def test_ws_requires_known_session_id(client) -> None:
    with pytest.raises(WebSocketDisconnect) as ei:
        with client.websocket_connect("/v1/ws"):
            pass
    assert ei.value.code == 1008

    with pytest.raises(WebSocketDisconnect) as ei:
        with client.websocket_connect("/v1/ws?sessionId=unknown"):
            pass
    assert ei.value.code == 1008


def test_ws_stream_transcribes_and_completes_on_disconnect(client) -> None:
    session_id = _create_session(client)

    with client.websocket_connect(f"/v1/ws?sessionId={session_id}") as ws:
        # мусорный text-фрейм игнорируется, соединение живёт
        ws.send_text("hello?")
        for _ in range(25):
            ws.send_bytes(LOUD_100MS)

        final = None
        for _ in range(100):
            msg = ws.receive_json()
            assert msg["type"] == "transcript"
            if msg["isFinal"]:
                final = msg
                break
        assert final == {"type": "transcript", "text": "mock segment 1", "isFinal": True}

    body = _wait_status(client, session_id, "completed")
    assert body["status"] == "completed"
    assert body["transcribedText"] == "mock segment 1"
    assert body["completedAt"] is not None

    # завершённая сессия повторно не открывается
    with pytest.raises(WebSocketDisconnect) as ei:
        with client.websocket_connect(f"/v1/ws?session_id={session_id}"):
            pass
    assert ei.value.code == 1008


def test_ws_second_stream_for_same_session_rejected(client) -> None:
    session_id = _create_session(client)

    with client.websocket_connect(f"/v1/ws?sessionId={session_id}") as first:
        with pytest.raises(WebSocketDisconnect) as ei:
            with client.websocket_connect(f"/v1/ws?sessionId={session_id}"):
                pass
        assert ei.value.code == 1008

        # первый поток продолжает работать
        first.send_text(json.dumps({"type": "pause"}))
        first.send_text(json.dumps({"type": "resume"}))
        for _ in range(25):
            first.send_bytes(LOUD_100MS)
        msg = first.receive_json()
        assert msg["type"] == "transcript"

    assert _wait_status(client, session_id, "completed")["status"] == "completed"
