"""Socket.IO client for the relay server.

This is the transport the browser client's relay speaks: every relay event is a
Socket.IO event whose single argument is the payload, so `peer-list`, `offer`,
`call-ended` and the rest map one to one onto `emit` and `on`.
"""

from __future__ import annotations

import functools
import logging
from typing import Any

import socketio
from socketio.exceptions import SocketIOError

from calls.errors import ChannelUnavailableError
from signaling.base import BaseSignalingChannel, EventHandler
from signaling.messages import REGISTER, Envelope, RegisterMessage

LOGGER = logging.getLogger(__name__)


class SocketIOSignalingChannel(BaseSignalingChannel):
    """Relay connection over Socket.IO.

    Socket.IO reconnects by itself after a dropped connection. `available` follows
    its `connect` and `disconnect` events, and the local id is registered again
    on every (re)connect so the relay can route to us.
    """

    def __init__(self, url: str, local_id: str, *, client: socketio.AsyncClient | None = None) -> None:
        super().__init__(local_id)
        self._url = url
        self._sio = client or socketio.AsyncClient()
        self._sio.on("connect", self._on_connect)
        self._sio.on("disconnect", self._on_disconnect)

    def on(self, event: str, handler: EventHandler) -> None:
        super().on(event, handler)
        self._sio.on(event, functools.partial(self._forward, event))

    async def connect(self) -> None:
        if self._sio.connected:
            return

        LOGGER.info("Connecting to relay: %s", self._url)
        try:
            await self._sio.connect(self._url)
        except SocketIOError as exc:
            self._set_available(False)
            raise ChannelUnavailableError(f"Cannot reach relay at {self._url}: {exc}") from exc

    async def disconnect(self) -> None:
        await self._sio.disconnect()
        self._set_available(False)

    async def send(self, event: str, payload: Any) -> None:
        if not self.available or not self._sio.connected:
            raise ChannelUnavailableError(f"Cannot send {event}: relay not connected")
        try:
            await self._sio.emit(event, payload)
        except SocketIOError as exc:
            raise ChannelUnavailableError(f"Sending {event} failed: {exc}") from exc
        LOGGER.debug("Sent %s", event)

    async def _on_connect(self) -> None:
        self._set_available(True)
        register = RegisterMessage(user_id=self.local_id).model_dump(by_alias=True)
        try:
            await self.send(REGISTER, register)
        except ChannelUnavailableError as exc:
            LOGGER.warning("Registration failed: %s", exc.detail)
            return
        LOGGER.info("User %s registered.", self.local_id)

    async def _on_disconnect(self, *args: Any) -> None:
        # Newer python-socketio releases pass a disconnect reason.
        LOGGER.warning("Relay connection closed %s", args[0] if args else "")
        self._set_available(False)

    def _forward(self, event: str, *args: Any) -> None:
        self._deliver(Envelope(event=event, data=args[0] if args else None))
