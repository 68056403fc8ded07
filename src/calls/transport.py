"""Platform seams the session engine drives.

A platform hands out local media and peer connections; the engine never touches
media frames or ICE internals, it only moves descriptions and candidates around.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from signaling.messages import IceCandidate, SessionDescription

LocalCandidateCallback = Callable[[IceCandidate], None]
RemoteMediaCallback = Callable[[Any], None]
ConnectionFailedCallback = Callable[[str], None]


class TransportConnection(ABC):
    """One peer connection, exclusively owned by a call session."""

    @abstractmethod
    def add_local_media(self, media: Any) -> None:
        """Attach the local media tracks."""

    @abstractmethod
    async def create_offer(self) -> SessionDescription:
        """Produce an offer description."""

    @abstractmethod
    async def create_answer(self) -> SessionDescription:
        """Produce an answer description for the applied remote offer."""

    @abstractmethod
    async def set_local_description(self, description: SessionDescription) -> SessionDescription:
        """Apply a locally produced description and return the one to send.

        Transports that gather candidates before completing may return a richer
        description than the one passed in.
        """

    @abstractmethod
    async def set_remote_description(self, description: SessionDescription) -> None:
        """Apply the remote side's description."""

    @abstractmethod
    async def add_ice_candidate(self, candidate: IceCandidate) -> None:
        """Apply a remote network-path candidate."""

    @abstractmethod
    async def close(self) -> None:
        """Release the connection. Calling it again must be harmless."""


class MediaPlatform(ABC):
    """Host environment: local capture plus peer-connection construction."""

    @abstractmethod
    async def acquire_local_media(self) -> Any:
        """Return an opaque local media handle or raise MediaUnavailableError."""

    @abstractmethod
    def create_connection(
        self,
        on_local_candidate: LocalCandidateCallback,
        on_remote_media: RemoteMediaCallback,
        on_connection_failed: ConnectionFailedCallback,
    ) -> TransportConnection:
        """Build a new connection wired to the given callbacks.

        `on_connection_failed` is called with a short reason once the media path
        to the peer is lost for good; it is not called for a local `close()`.
        """

    async def release_local_media(self, media: Any) -> None:
        """Stop local capture. Platforms without teardown can keep the default."""

        return None
