"""In-process relay for tests and local demos.

Routes events between `LoopbackChannel`s the way the relay server does: by the
payload's `target`, stamping `sender`, and broadcasting `peer-list` on every
registration change. Delivery goes through `loop.call_soon` so that, like a real
socket, nothing is handled inside the sender's call stack.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from typing import Any

from calls.errors import ChannelUnavailableError
from signaling.base import BaseSignalingChannel
from signaling.messages import PEER_LIST, Envelope

LOGGER = logging.getLogger(__name__)


class LoopbackRelay:
    def __init__(self) -> None:
        self._channels: dict[str, LoopbackChannel] = {}
        self.sent: list[tuple[str, str, Any]] = []

    def channel(self, local_id: str) -> LoopbackChannel:
        return LoopbackChannel(self, local_id)

    @property
    def peer_ids(self) -> list[str]:
        return list(self._channels)

    def _register(self, channel: LoopbackChannel) -> None:
        self._channels[channel.local_id] = channel
        self._broadcast_peer_list()

    def _unregister(self, channel: LoopbackChannel) -> None:
        if self._channels.get(channel.local_id) is channel:
            del self._channels[channel.local_id]
            self._broadcast_peer_list()

    def _broadcast_peer_list(self) -> None:
        ids = self.peer_ids
        for channel in self._channels.values():
            channel._enqueue(Envelope(event=PEER_LIST, data=list(ids)))

    def _route(self, sender: str, event: str, payload: Any) -> None:
        self.sent.append((sender, event, copy.deepcopy(payload)))
        if not isinstance(payload, dict):
            LOGGER.debug("Unroutable %s from %s", event, sender)
            return
        target = payload.get("target")
        channel = self._channels.get(target) if isinstance(target, str) else None
        if channel is None:
            LOGGER.debug("No peer %s for %s", target, event)
            return
        forwarded = copy.deepcopy(payload)
        forwarded["sender"] = sender
        channel._enqueue(Envelope(event=event, data=forwarded))


class LoopbackChannel(BaseSignalingChannel):
    def __init__(self, relay: LoopbackRelay, local_id: str) -> None:
        super().__init__(local_id)
        self._relay = relay

    async def connect(self) -> None:
        if self.available:
            return
        self._set_available(True)
        self._relay._register(self)

    async def disconnect(self) -> None:
        if not self.available:
            return
        self._relay._unregister(self)
        self._set_available(False)

    def drop(self) -> None:
        """Simulate losing the relay connection."""

        self._relay._unregister(self)
        self._set_available(False)

    async def send(self, event: str, payload: Any) -> None:
        if not self.available:
            raise ChannelUnavailableError(f"Cannot send {event}: relay not connected")
        self._relay._route(self.local_id, event, payload)

    def _enqueue(self, envelope: Envelope) -> None:
        asyncio.get_running_loop().call_soon(self._deliver_if_connected, envelope)

    def _deliver_if_connected(self, envelope: Envelope) -> None:
        if self.available:
            self._deliver(envelope)
