"""Factory returning the configured relay channel."""

from __future__ import annotations

from config.settings import get_settings
from signaling.base import BaseSignalingChannel
from signaling.channel import WebsocketSignalingChannel
from signaling.socketio_channel import SocketIOSignalingChannel


def build_channel(
    local_id: str | None = None,
    *,
    relay_url: str | None = None,
    transport: str | None = None,
) -> BaseSignalingChannel:
    """Instantiate the channel for `relay_transport`; arguments override settings."""

    settings = get_settings()
    url = relay_url or settings.relay_url
    peer_id = local_id or settings.local_peer_id
    transport = transport or settings.relay_transport
    if transport == "socketio":
        return SocketIOSignalingChannel(url, peer_id)
    if transport == "websocket":
        return WebsocketSignalingChannel(
            url,
            peer_id,
            ping_interval=settings.ws_ping_interval,
            ping_timeout=settings.ws_ping_timeout,
        )
    raise ValueError(f"Unsupported relay_transport: {transport}")
