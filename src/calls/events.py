"""Inputs to the session engine's dispatch loop.

Commands come from presentation adapters, the rest from the channel, the transport
or finished platform operations.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from signaling.messages import IceCandidate


class Step(str, Enum):
    OFFER = "offer"
    ANSWER = "answer"
    REMOTE_OFFER = "remote_offer"
    REMOTE_ANSWER = "remote_answer"
    CANDIDATE = "candidate"


# Commands


@dataclass(frozen=True, slots=True)
class SelectTarget:
    peer_id: str | None


@dataclass(frozen=True, slots=True)
class InitiateCall:
    peer_id: str | None = None


@dataclass(frozen=True, slots=True)
class AcceptCall:
    pass


@dataclass(frozen=True, slots=True)
class RejectCall:
    pass


@dataclass(frozen=True, slots=True)
class EndCall:
    pass


@dataclass(frozen=True, slots=True)
class RetryLocalMedia:
    pass


# Channel


@dataclass(frozen=True, slots=True)
class SignalReceived:
    event: str
    payload: Any


@dataclass(frozen=True, slots=True)
class ChannelStateChanged:
    available: bool


# Transport and platform


@dataclass(frozen=True, slots=True)
class LocalCandidateProduced:
    session_id: int
    candidate: IceCandidate


@dataclass(frozen=True, slots=True)
class RemoteMediaReceived:
    session_id: int
    stream: Any


@dataclass(frozen=True, slots=True)
class ConnectionLost:
    session_id: int
    reason: str


@dataclass(frozen=True, slots=True)
class OperationCompleted:
    session_id: int
    step: Step
    result: Any = None
    error: BaseException | None = None


@dataclass(frozen=True, slots=True)
class LocalMediaAcquired:
    media: Any = None
    error: BaseException | None = None
