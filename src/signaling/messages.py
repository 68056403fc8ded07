"""Wire models for the relay protocol.

Descriptions and candidates are produced by the transport and must reach the remote
side unchanged, so both models keep unknown fields and only emit what was set.
"""

from __future__ import annotations

import json
from typing import Any, Final, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from calls.errors import MalformedSignalError

REGISTER: Final[str] = "register"
PEER_LIST: Final[str] = "peer-list"
OFFER: Final[str] = "offer"
ANSWER: Final[str] = "answer"
ICE_CANDIDATE: Final[str] = "ice-candidate"
CALL_REJECTED: Final[str] = "call-rejected"
CALL_ENDED: Final[str] = "call-ended"

INBOUND_EVENTS: Final[tuple[str, ...]] = (
    PEER_LIST,
    OFFER,
    ANSWER,
    ICE_CANDIDATE,
    CALL_REJECTED,
    CALL_ENDED,
)


class SessionDescription(BaseModel):
    model_config = ConfigDict(extra="allow", frozen=True)

    type: Literal["offer", "answer", "pranswer", "rollback"]
    sdp: str = Field(min_length=1)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class IceCandidate(BaseModel):
    model_config = ConfigDict(extra="allow", frozen=True, populate_by_name=True)

    candidate: str
    sdp_mid: str | None = Field(default=None, alias="sdpMid")
    sdp_mline_index: int | None = Field(default=None, alias="sdpMLineIndex")
    username_fragment: str | None = Field(default=None, alias="usernameFragment")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_unset=True)


class Envelope(BaseModel):
    event: str = Field(min_length=1)
    data: Any = None


class RegisterMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId", min_length=1)


class OfferMessage(BaseModel):
    offer: SessionDescription
    sender: str = Field(min_length=1)


class AnswerMessage(BaseModel):
    answer: SessionDescription
    sender: str | None = None


class CandidateMessage(BaseModel):
    candidate: IceCandidate
    sender: str | None = None


class TerminationMessage(BaseModel):
    """Body of call-rejected and call-ended."""

    target: str | None = None
    sender: str | None = None


M = TypeVar("M", bound=BaseModel)


def parse_payload(model: type[M], payload: Any, *, event: str) -> M:
    """Validate an inbound payload, raising MalformedSignalError on any mismatch."""

    if payload is None:
        raise MalformedSignalError(f"{event}: empty payload")
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) or "<root>" for err in exc.errors())
        raise MalformedSignalError(f"{event}: invalid fields ({fields})") from exc


def parse_peer_list(payload: Any) -> list[str]:
    if not isinstance(payload, list):
        raise MalformedSignalError(f"{PEER_LIST}: expected a list of peer ids")
    return [str(item) for item in payload if isinstance(item, str) and item]


def encode_envelope(event: str, payload: Any) -> str:
    return json.dumps({"event": event, "data": payload}, separators=(",", ":"))


def decode_envelope(text: str | bytes) -> Envelope:
    try:
        raw = json.loads(text)
    except json.JSONDecodeError as exc:
        raise MalformedSignalError("frame is not valid JSON") from exc
    return parse_payload(Envelope, raw, event="envelope")


def offer_payload(target: str, offer: SessionDescription) -> dict[str, Any]:
    return {"target": target, "offer": offer.to_wire()}


def answer_payload(target: str, answer: SessionDescription) -> dict[str, Any]:
    return {"target": target, "answer": answer.to_wire()}


def candidate_payload(target: str, candidate: IceCandidate) -> dict[str, Any]:
    return {"target": target, "candidate": candidate.to_wire()}


def termination_payload(target: str) -> dict[str, Any]:
    return {"target": target}
