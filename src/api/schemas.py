"""API-facing Pydantic models."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from calls.state import CallState


class ErrorNoticeResponse(BaseModel):
    kind: str
    detail: str


class CallStateResponse(BaseModel):
    phase: Literal["idle", "calling", "ringing_incoming", "negotiating", "connected"]
    local_id: str
    peers: list[str]
    selected_target: str | None = None
    incoming_call_from: str | None = None
    remote_peer: str | None = None
    has_remote_media: bool = Field(description="True once remote audio is playing.")
    local_media_ready: bool
    channel_available: bool
    last_error: ErrorNoticeResponse | None = None
    end_reason: str | None = None

    @classmethod
    def from_state(cls, state: CallState) -> CallStateResponse:
        return cls.model_validate(state.to_dict())


class SelectTargetRequest(BaseModel):
    peer_id: str | None = Field(default=None, description="Peer to call next; null clears the selection.")


class InitiateCallRequest(BaseModel):
    peer_id: str | None = Field(default=None, description="Overrides the selected target.")
