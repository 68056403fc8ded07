from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from calls.candidate_buffer import CandidateBuffer
from calls.transport import TransportConnection
from signaling.messages import IceCandidate


class Phase(str, Enum):
    IDLE = "idle"
    CALLING = "calling"
    RINGING_INCOMING = "ringing_incoming"
    NEGOTIATING = "negotiating"
    CONNECTED = "connected"


class Role(str, Enum):
    CALLER = "caller"
    CALLEE = "callee"


class EndReason(str, Enum):
    LOCAL_HANGUP = "local_hangup"
    REMOTE_HANGUP = "remote_hangup"
    REJECTED_LOCALLY = "rejected_locally"
    REJECTED_BY_PEER = "rejected_by_peer"
    FAILED = "failed"


@dataclass(eq=False, slots=True)
class CallSession:
    """The single active or pending negotiation."""

    id: int
    role: Role
    peer_id: str
    connection: TransportConnection
    phase: Phase
    remote_description_set: bool = False
    local_description_sent: bool = False
    answer_received: bool = False
    closed: bool = False
    remote_stream: Any = None
    # Remote candidates waiting for the remote description.
    inbound: CandidateBuffer[IceCandidate] = field(default_factory=CandidateBuffer)
    # Local candidates produced before our offer/answer went out.
    outbound: CandidateBuffer[IceCandidate] = field(default_factory=CandidateBuffer)
    last_operation: asyncio.Task | None = None


@dataclass(frozen=True, slots=True)
class ErrorNotice:
    kind: str
    detail: str


@dataclass(frozen=True, slots=True)
class CallState:
    """What presentation adapters render."""

    phase: Phase
    local_id: str
    peers: tuple[str, ...] = ()
    selected_target: str | None = None
    incoming_call_from: str | None = None
    remote_peer: str | None = None
    remote_media_stream: Any = None
    local_media_ready: bool = False
    channel_available: bool = False
    last_error: ErrorNotice | None = None
    end_reason: EndReason | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase.value,
            "local_id": self.local_id,
            "peers": list(self.peers),
            "selected_target": self.selected_target,
            "incoming_call_from": self.incoming_call_from,
            "remote_peer": self.remote_peer,
            "has_remote_media": self.remote_media_stream is not None,
            "local_media_ready": self.local_media_ready,
            "channel_available": self.channel_available,
            "last_error": (
                {"kind": self.last_error.kind, "detail": self.last_error.detail}
                if self.last_error
                else None
            ),
            "end_reason": self.end_reason.value if self.end_reason else None,
        }
