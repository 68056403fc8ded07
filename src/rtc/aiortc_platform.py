"""aiortc-backed media platform.

Local audio comes from an ffmpeg capture device through `MediaPlayer`; every call
gets its own `MediaRelay` subscription so the capture survives a closed peer
connection. Remote audio is written to a file with `MediaRecorder` or dropped into a
`MediaBlackhole` when no output is configured.

aiortc gathers candidates before `setLocalDescription` returns and embeds them in
the SDP, so this transport never reports trickled local candidates. Remote
candidates in browser form (`candidate:...`) are still accepted.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from aiortc import (
    MediaStreamTrack,
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.contrib.media import MediaBlackhole, MediaPlayer, MediaRecorder, MediaRelay
from aiortc.sdp import candidate_from_sdp

from calls.errors import MediaUnavailableError
from calls.transport import (
    ConnectionFailedCallback,
    LocalCandidateCallback,
    MediaPlatform,
    RemoteMediaCallback,
    TransportConnection,
)
from config.settings import get_settings
from signaling.messages import IceCandidate, SessionDescription

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class LocalAudio:
    """Owns the capture player so its track stays alive between calls."""

    player: MediaPlayer
    track: MediaStreamTrack


class AiortcConnection(TransportConnection):
    def __init__(
        self,
        *,
        ice_servers: list[str],
        relay: MediaRelay,
        output_path: Path | None,
        on_local_candidate: LocalCandidateCallback,
        on_remote_media: RemoteMediaCallback,
        on_connection_failed: ConnectionFailedCallback,
    ) -> None:
        self._pc = RTCPeerConnection(
            configuration=RTCConfiguration(iceServers=[RTCIceServer(urls=[url]) for url in ice_servers])
        )
        self._relay = relay
        self._sink = MediaRecorder(str(output_path)) if output_path else MediaBlackhole()
        self._sink_started = False
        # Never called: candidates travel inside the SDP (see module docstring).
        self._on_local_candidate = on_local_candidate
        self._on_remote_media = on_remote_media
        self._on_connection_failed = on_connection_failed
        self._closed = False

        @self._pc.on("track")
        async def on_track(track: MediaStreamTrack) -> None:
            if track.kind != "audio":
                return
            LOGGER.info("Remote %s track received", track.kind)
            self._sink.addTrack(track)
            if not self._sink_started:
                self._sink_started = True
                await self._sink.start()
            self._on_remote_media(track)

        @self._pc.on("connectionstatechange")
        async def on_state_change() -> None:
            state = self._pc.connectionState
            LOGGER.info("Peer connection state -> %s", state)
            if state == "failed" and not self._closed:
                self._on_connection_failed(f"peer connection {state}")

    def add_local_media(self, media: Any) -> None:
        audio: LocalAudio = media
        self._pc.addTrack(self._relay.subscribe(audio.track))

    async def create_offer(self) -> SessionDescription:
        offer = await self._pc.createOffer()
        return SessionDescription(type=offer.type, sdp=offer.sdp)

    async def create_answer(self) -> SessionDescription:
        answer = await self._pc.createAnswer()
        return SessionDescription(type=answer.type, sdp=answer.sdp)

    async def set_local_description(self, description: SessionDescription) -> SessionDescription:
        await self._pc.setLocalDescription(_to_aiortc(description))
        # localDescription now carries the gathered candidates.
        local = self._pc.localDescription
        return SessionDescription(type=local.type, sdp=local.sdp)

    async def set_remote_description(self, description: SessionDescription) -> None:
        await self._pc.setRemoteDescription(_to_aiortc(description))

    async def add_ice_candidate(self, candidate: IceCandidate) -> None:
        sdp = candidate.candidate
        if not sdp:
            # End-of-candidates marker.
            return
        if sdp.startswith("candidate:"):
            sdp = sdp.split(":", 1)[1]
        parsed = candidate_from_sdp(sdp)
        parsed.sdpMid = candidate.sdp_mid
        parsed.sdpMLineIndex = candidate.sdp_mline_index
        await self._pc.addIceCandidate(parsed)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._sink_started:
            await self._sink.stop()
        await self._pc.close()


class AiortcPlatform(MediaPlatform):
    def __init__(
        self,
        *,
        ice_servers: list[str] | None = None,
        input_device: str | None = None,
        input_format: str | None = None,
        output_path: Path | None = None,
    ) -> None:
        settings = get_settings()
        self._ice_servers = ice_servers if ice_servers is not None else list(settings.stun_servers)
        self._input_device = input_device or settings.audio_input_device
        self._input_format = input_format if input_format is not None else settings.audio_input_format
        self._output_path = output_path if output_path is not None else settings.audio_output_path
        self._relay = MediaRelay()

    async def acquire_local_media(self) -> LocalAudio:
        try:
            # ffmpeg opens the device synchronously.
            player = await asyncio.to_thread(
                MediaPlayer, self._input_device, format=self._input_format
            )
        except Exception as exc:
            raise MediaUnavailableError(
                f"Cannot open audio input {self._input_device!r} ({self._input_format}): {exc}"
            ) from exc

        if player.audio is None:
            raise MediaUnavailableError(f"Audio input {self._input_device!r} has no audio track")
        return LocalAudio(player=player, track=player.audio)

    async def release_local_media(self, media: Any) -> None:
        audio: LocalAudio = media
        audio.track.stop()

    def create_connection(
        self,
        on_local_candidate: LocalCandidateCallback,
        on_remote_media: RemoteMediaCallback,
        on_connection_failed: ConnectionFailedCallback,
    ) -> AiortcConnection:
        return AiortcConnection(
            ice_servers=self._ice_servers,
            relay=self._relay,
            output_path=self._output_path,
            on_local_candidate=on_local_candidate,
            on_remote_media=on_remote_media,
            on_connection_failed=on_connection_failed,
        )


def _to_aiortc(description: SessionDescription) -> RTCSessionDescription:
    return RTCSessionDescription(sdp=description.sdp, type=description.type)
