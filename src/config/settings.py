"""Application-wide configuration loading and validation."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal
from uuid import uuid4

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Centralized environment configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    log_level: str = Field(default="INFO")

    # Relay / signaling
    relay_transport: Literal["socketio", "websocket"] = Field(
        default="socketio",
        description="socketio for a Socket.IO relay, websocket for one that speaks raw JSON envelopes.",
    )
    relay_url: str = Field(
        default="http://localhost:3000",
        description="URL of the relay server that routes signaling events.",
    )
    local_peer_id: str = Field(
        default_factory=lambda: str(uuid4()),
        description="Identifier announced to the relay. Random per process unless set.",
    )
    ws_ping_interval: float = Field(default=20.0, gt=0)
    ws_ping_timeout: float = Field(default=20.0, gt=0)

    # Transport
    stun_servers: list[str] = Field(
        default_factory=lambda: ["stun:stun.l.google.com:19302"],
        description="ICE servers handed to every new peer connection.",
    )

    # Local audio capture (ffmpeg device name/format, as understood by aiortc's MediaPlayer)
    audio_input_device: str = Field(default="default")
    audio_input_format: str | None = Field(
        default="pulse",
        description="ffmpeg input format, e.g. pulse, alsa, avfoundation, dshow.",
    )
    # Remote audio playback target. Empty means remote audio is consumed and dropped.
    audio_output_path: Path | None = Field(
        default=None,
        description="Optional file (e.g. call.wav) the remote audio is recorded to.",
    )

    # Web presentation adapter
    api_host: str = Field(default="127.0.0.1")
    api_port: int = Field(default=8000)

    @field_validator("audio_output_path")
    @classmethod
    def ensure_output_dir(cls, value: Path | None) -> Path | None:
        if value is not None:
            value.parent.mkdir(parents=True, exist_ok=True)
        return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""

    return Settings()
