from __future__ import annotations

import json

import pytest

from calls.errors import MalformedSignalError
from signaling.messages import (
    AnswerMessage,
    IceCandidate,
    OfferMessage,
    SessionDescription,
    decode_envelope,
    encode_envelope,
    offer_payload,
    parse_payload,
    parse_peer_list,
)


def test_session_description_keeps_unknown_fields():
    raw = {"type": "offer", "sdp": "v=0\r\no=- 1 2 IN IP4 127.0.0.1\r\n", "x-extra": {"k": 1}}
    message = parse_payload(OfferMessage, {"offer": raw, "sender": "A"}, event="offer")

    assert message.offer.to_wire() == raw
    assert offer_payload("B", message.offer) == {"target": "B", "offer": raw}


def test_ice_candidate_emits_only_what_was_sent():
    candidate = IceCandidate.model_validate({"candidate": "candidate:1 1 udp 1 1.2.3.4 5 typ host"})
    assert candidate.to_wire() == {"candidate": "candidate:1 1 udp 1 1.2.3.4 5 typ host"}

    full = IceCandidate.model_validate({"candidate": "c", "sdpMid": "0", "sdpMLineIndex": 0})
    assert full.sdp_mid == "0"
    assert full.to_wire() == {"candidate": "c", "sdpMid": "0", "sdpMLineIndex": 0}


@pytest.mark.parametrize(
    "payload",
    [None, {}, {"answer": {"type": "answer", "sdp": ""}}, {"answer": {"type": "bogus", "sdp": "v=0"}}],
)
def test_invalid_answers_raise_malformed_signal(payload):
    with pytest.raises(MalformedSignalError):
        parse_payload(AnswerMessage, payload, event="answer")


def test_peer_list_requires_a_list():
    assert parse_peer_list(["a", "", 3, "b"]) == ["a", "b"]
    with pytest.raises(MalformedSignalError):
        parse_peer_list({"peers": ["a"]})


def test_envelope_encoding():
    text = encode_envelope("call-ended", {"target": "B"})
    assert json.loads(text) == {"event": "call-ended", "data": {"target": "B"}}

    envelope = decode_envelope(text)
    assert envelope.event == "call-ended"
    assert envelope.data == {"target": "B"}

    with pytest.raises(MalformedSignalError):
        decode_envelope("not json")
    with pytest.raises(MalformedSignalError):
        decode_envelope(json.dumps({"data": 1}))
