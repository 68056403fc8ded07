"""Call-domain exceptions.

These are safe to import from presentation layers; each carries the HTTP status the
web adapter answers with when a command is refused.
"""

from __future__ import annotations


class CallError(Exception):
    status_code: int = 500
    default_detail: str = "Call error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail

    @property
    def kind(self) -> str:
        return type(self).__name__


class MediaUnavailableError(CallError):
    status_code = 503
    default_detail = "Local audio source is not available."


class MalformedSignalError(CallError):
    status_code = 422
    default_detail = "Signaling message is missing required fields."


class ChannelUnavailableError(CallError):
    status_code = 503
    default_detail = "Relay server is not reachable."


class StaleEventError(CallError):
    """Event addressed to someone else or referencing no active call.

    Never shown to the user; the engine logs and drops it.
    """

    status_code = 409
    default_detail = "Event does not belong to the active call."


class ConcurrentSessionError(CallError):
    status_code = 409
    default_detail = "A call is already in progress."


class InvalidCommandError(CallError):
    status_code = 409
    default_detail = "Command is not valid in the current call state."


class NegotiationFailedError(CallError):
    status_code = 502
    default_detail = "Session negotiation failed."
