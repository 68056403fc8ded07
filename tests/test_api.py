from __future__ import annotations

from fastapi.testclient import TestClient

from fakes import start_engine


def _join(client: TestClient, relay, peer_id: str):
    peer = client.portal.call(start_engine, relay, peer_id)
    client.portal.call(client.app.state.engine.drain)
    return peer


def test_state_reports_identity_and_media(client):
    response = client.get("/api/state")
    assert response.status_code == 200
    payload = response.json()

    assert payload["phase"] == "idle"
    assert payload["local_id"] == "A"
    assert payload["peers"] == []
    assert payload["local_media_ready"] is True
    assert payload["channel_available"] is True
    assert payload["has_remote_media"] is False


def test_call_requires_a_target(client):
    response = client.post("/api/call")
    assert response.status_code == 409
    assert response.json()["detail"] == "No peer selected."

    payload = client.get("/api/state").json()
    assert payload["last_error"] == {"kind": "InvalidCommandError", "detail": "No peer selected."}


def test_call_flow_over_http(client, relay):
    b = _join(client, relay, "B")
    try:
        assert client.post("/api/target", json={"peer_id": "ghost"}).status_code == 409

        response = client.post("/api/target", json={"peer_id": "B"})
        assert response.status_code == 200
        assert response.json()["selected_target"] == "B"

        response = client.post("/api/call")
        assert response.status_code == 200
        assert response.json()["phase"] == "calling"
        assert response.json()["remote_peer"] == "B"

        client.portal.call(client.app.state.engine.drain)
        client.portal.call(b.drain)
        assert b.state.incoming_call_from == "A"

        assert client.post("/api/call", json={"peer_id": "B"}).status_code == 409

        response = client.post("/api/hangup")
        assert response.status_code == 200
        assert response.json()["phase"] == "idle"
        assert response.json()["end_reason"] == "local_hangup"
    finally:
        client.portal.call(b.disconnect)


def test_accept_and_reject_without_incoming_call(client):
    response = client.post("/api/accept")
    assert response.status_code == 409
    assert response.json()["detail"] == "No incoming call to accept."

    assert client.post("/api/reject").status_code == 409


def test_missing_microphone_maps_to_503(app, relay, platform):
    platform.media_available = False

    with TestClient(app) as client:
        b = _join(client, relay, "B")
        try:
            assert client.get("/api/state").json()["local_media_ready"] is False
            assert client.post("/api/call", json={"peer_id": "B"}).status_code == 503

            platform.media_available = True
            assert client.post("/api/media/retry").status_code == 200
            client.portal.call(client.app.state.engine.drain)
            assert client.get("/api/state").json()["local_media_ready"] is True
        finally:
            client.portal.call(b.disconnect)


def test_routes_refuse_before_startup(app):
    # Without the context manager the lifespan never runs, so no engine exists.
    client = TestClient(app)
    response = client.get("/api/state")
    assert response.status_code == 503
    assert response.json()["detail"] == "Call engine not started."


def test_event_feed_pushes_snapshots(client, relay):
    with client.websocket_connect("/api/events") as ws:
        first = ws.receive_json()
        assert first["phase"] == "idle"
        assert first["local_id"] == "A"

        b = _join(client, relay, "B")
        try:
            update = ws.receive_json()
            assert update["peers"] == ["B"]
        finally:
            client.portal.call(b.disconnect)
