"""Shared abstractions for signaling channels."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from signaling.messages import Envelope

LOGGER = logging.getLogger(__name__)

EventHandler = Callable[[Any], None]
StateListener = Callable[[bool], None]


class BaseSignalingChannel(ABC):
    """Bidirectional event bus to the relay.

    One handler per event name; registering again replaces the previous handler.
    Handlers are called synchronously with the raw payload and must not block.
    """

    def __init__(self, local_id: str) -> None:
        self.local_id = local_id
        self._handlers: dict[str, EventHandler] = {}
        self._state_listener: StateListener | None = None
        self._available = False

    @property
    def available(self) -> bool:
        return self._available

    def on(self, event: str, handler: EventHandler) -> None:
        if event in self._handlers:
            LOGGER.debug("Replacing handler for %s", event)
        self._handlers[event] = handler

    def off(self, event: str) -> None:
        self._handlers.pop(event, None)

    def set_state_listener(self, listener: StateListener | None) -> None:
        self._state_listener = listener

    def _set_available(self, available: bool) -> None:
        if available == self._available:
            return
        self._available = available
        LOGGER.info("Signaling channel %s", "available" if available else "unavailable")
        if self._state_listener is not None:
            self._state_listener(available)

    def _deliver(self, envelope: Envelope) -> None:
        handler = self._handlers.get(envelope.event)
        if handler is None:
            LOGGER.debug("No handler for event %s", envelope.event)
            return
        handler(envelope.data)

    @abstractmethod
    async def connect(self) -> None:
        """Open the channel and announce the local id."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the channel. Safe to call more than once."""

    @abstractmethod
    async def send(self, event: str, payload: Any) -> None:
        """Transmit one event, raising ChannelUnavailableError when it cannot."""
