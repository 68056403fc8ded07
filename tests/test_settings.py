from __future__ import annotations

import pytest
from pydantic import ValidationError

from config.settings import Settings


def test_relay_defaults_to_socketio(monkeypatch):
    monkeypatch.delenv("RELAY_TRANSPORT", raising=False)
    monkeypatch.delenv("RELAY_URL", raising=False)
    settings = Settings(_env_file=None)

    assert settings.relay_transport == "socketio"
    assert settings.relay_url == "http://localhost:3000"
    assert "environment" not in Settings.model_fields


def test_relay_transport_comes_from_environment(monkeypatch):
    monkeypatch.setenv("RELAY_TRANSPORT", "websocket")
    assert Settings(_env_file=None).relay_transport == "websocket"

    monkeypatch.setenv("RELAY_TRANSPORT", "carrier-pigeon")
    with pytest.raises(ValidationError):
        Settings(_env_file=None)
