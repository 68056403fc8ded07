"""Websocket client for the relay server."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from calls.errors import ChannelUnavailableError, MalformedSignalError
from signaling.base import BaseSignalingChannel
from signaling.messages import REGISTER, RegisterMessage, decode_envelope, encode_envelope

LOGGER = logging.getLogger(__name__)


class WebsocketSignalingChannel(BaseSignalingChannel):
    """Relay connection speaking JSON envelopes `{"event": ..., "data": ...}`.

    The relay routes by the `target` field of each payload and stamps `sender` on
    what it forwards. Losing the socket flips `available` to False; reconnecting is
    left to whoever owns the channel.
    """

    def __init__(
        self,
        url: str,
        local_id: str,
        *,
        ping_interval: float = 20.0,
        ping_timeout: float = 20.0,
    ) -> None:
        super().__init__(local_id)
        self._url = _websocket_url(url)
        self._ping_interval = ping_interval
        self._ping_timeout = ping_timeout
        self._ws: Any = None
        self._reader: asyncio.Task | None = None

    async def connect(self) -> None:
        if self._ws is not None:
            return

        LOGGER.info("Connecting to relay: %s", self._url)
        try:
            self._ws = await websockets.connect(
                self._url,
                ping_interval=self._ping_interval,
                ping_timeout=self._ping_timeout,
            )
        except (OSError, WebSocketException) as exc:
            self._set_available(False)
            raise ChannelUnavailableError(f"Cannot reach relay at {self._url}: {exc}") from exc

        self._set_available(True)
        register = RegisterMessage(user_id=self.local_id).model_dump(by_alias=True)
        try:
            await self.send(REGISTER, register)
        except ChannelUnavailableError:
            ws, self._ws = self._ws, None
            await ws.close()
            raise
        LOGGER.info("User %s registered.", self.local_id)

        self._reader = asyncio.create_task(self._read_loop(self._ws))

    async def disconnect(self) -> None:
        reader, self._reader = self._reader, None
        ws, self._ws = self._ws, None

        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass
        if ws is not None:
            await ws.close()
        self._set_available(False)

    async def send(self, event: str, payload: Any) -> None:
        ws = self._ws
        if ws is None or not self.available:
            raise ChannelUnavailableError(f"Cannot send {event}: relay not connected")
        try:
            await ws.send(encode_envelope(event, payload))
        except (OSError, WebSocketException) as exc:
            self._set_available(False)
            raise ChannelUnavailableError(f"Sending {event} failed: {exc}") from exc
        LOGGER.debug("Sent %s", event)

    async def _read_loop(self, ws: Any) -> None:
        try:
            async for message in ws:
                try:
                    envelope = decode_envelope(message)
                except MalformedSignalError as exc:
                    LOGGER.warning("Dropping relay frame: %s", exc.detail)
                    continue
                self._deliver(envelope)
        except ConnectionClosed as exc:
            LOGGER.warning("Relay connection closed: %s", exc)
        except Exception:
            LOGGER.exception("Relay read loop crashed")
        finally:
            if self._ws is ws:
                self._ws = None
                self._reader = None
            self._set_available(False)


def _websocket_url(url: str) -> str:
    if url.startswith("https://"):
        return "wss://" + url.removeprefix("https://")
    if url.startswith("http://"):
        return "ws://" + url.removeprefix("http://")
    return url
