from __future__ import annotations

import asyncio
import json

import pytest
import socketio
import websockets
from aiohttp import web

import signaling.channel as websocket_channel
from calls.errors import ChannelUnavailableError
from signaling.channel import WebsocketSignalingChannel
from signaling.factory import build_channel
from signaling.loopback import LoopbackRelay
from signaling.socketio_channel import SocketIOSignalingChannel


async def wait_until(predicate, timeout: float = 5.0) -> None:
    for _ in range(int(timeout / 0.01)):
        if predicate():
            return
        await asyncio.sleep(0.01)
    raise AssertionError("condition not reached")


def test_loopback_routes_by_target_and_stamps_sender():
    async def scenario():
        relay = LoopbackRelay()
        a, b = relay.channel("A"), relay.channel("B")
        received: list = []
        b.on("offer", received.append)
        await a.connect()
        await b.connect()

        await a.send("offer", {"target": "B", "offer": {"type": "offer", "sdp": "v=0"}})
        await a.send("offer", {"target": "nobody", "offer": {"type": "offer", "sdp": "v=0"}})
        await asyncio.sleep(0)

        assert received == [{"target": "B", "offer": {"type": "offer", "sdp": "v=0"}, "sender": "A"}]

    asyncio.run(scenario())


def test_registering_a_handler_twice_replaces_it():
    async def scenario():
        relay = LoopbackRelay()
        channel = relay.channel("A")
        first, second = [], []
        channel.on("peer-list", first.append)
        channel.on("peer-list", second.append)
        await channel.connect()
        await asyncio.sleep(0)

        assert first == []
        assert second == [["A"]]

    asyncio.run(scenario())


def test_loopback_send_while_disconnected_raises():
    async def scenario():
        relay = LoopbackRelay()
        channel = relay.channel("A")
        states: list[bool] = []
        channel.set_state_listener(states.append)

        with pytest.raises(ChannelUnavailableError):
            await channel.send("call-ended", {"target": "B"})

        await channel.connect()
        channel.drop()
        assert states == [True, False]
        with pytest.raises(ChannelUnavailableError):
            await channel.send("call-ended", {"target": "B"})

    asyncio.run(scenario())


def test_websocket_channel_registers_and_exchanges_envelopes():
    async def scenario():
        frames: list[dict] = []
        first_frame = asyncio.Event()

        async def relay_handler(ws) -> None:
            async for message in ws:
                frames.append(json.loads(message))
                if len(frames) == 1:
                    first_frame.set()
                    await ws.send(json.dumps({"event": "peer-list", "data": ["me", "other"]}))
                    await ws.send("garbage")
                    await ws.send(json.dumps({"event": "unknown", "data": None}))

        async with websockets.serve(relay_handler, "127.0.0.1", 0) as server:
            port = server.sockets[0].getsockname()[1]
            channel = WebsocketSignalingChannel(f"ws://127.0.0.1:{port}", "me")
            peer_lists: list = []
            states: list[bool] = []
            channel.on("peer-list", peer_lists.append)
            channel.set_state_listener(states.append)

            await channel.connect()
            await asyncio.wait_for(first_frame.wait(), timeout=5)
            for _ in range(50):
                if peer_lists:
                    break
                await asyncio.sleep(0.01)

            await channel.send("call-ended", {"target": "other"})
            for _ in range(50):
                if len(frames) == 2:
                    break
                await asyncio.sleep(0.01)

            assert frames[0] == {"event": "register", "data": {"userId": "me"}}
            assert frames[1] == {"event": "call-ended", "data": {"target": "other"}}
            assert peer_lists == [["me", "other"]]
            assert channel.available is True

            await channel.disconnect()
            await channel.disconnect()
            assert channel.available is False
            assert states == [True, False]

    asyncio.run(scenario())


def test_websocket_channel_reports_unreachable_relay():
    async def scenario():
        channel = WebsocketSignalingChannel("ws://127.0.0.1:9", "me")
        with pytest.raises(ChannelUnavailableError):
            await channel.connect()
        assert channel.available is False
        with pytest.raises(ChannelUnavailableError):
            await channel.send("call-ended", {"target": "x"})

    asyncio.run(scenario())


def test_websocket_channel_closes_socket_when_registration_fails(monkeypatch):
    real_encode = websocket_channel.encode_envelope
    attempts: list[str] = []

    def encode_failing_once(event, payload):
        attempts.append(event)
        if len(attempts) == 1:
            raise OSError("broken pipe")
        return real_encode(event, payload)

    monkeypatch.setattr(websocket_channel, "encode_envelope", encode_failing_once)

    async def scenario():
        frames: list[dict] = []
        closed: list[int] = []

        async def relay_handler(ws) -> None:
            async for message in ws:
                frames.append(json.loads(message))
            closed.append(1)

        async with websockets.serve(relay_handler, "127.0.0.1", 0) as server:
            port = server.sockets[0].getsockname()[1]
            channel = WebsocketSignalingChannel(f"http://127.0.0.1:{port}", "me")

            with pytest.raises(ChannelUnavailableError):
                await channel.connect()
            assert channel.available is False
            await wait_until(lambda: closed)

            await channel.connect()
            await wait_until(lambda: frames)
            assert frames == [{"event": "register", "data": {"userId": "me"}}]
            assert channel.available is True
            await channel.disconnect()

    asyncio.run(scenario())


def test_socketio_channel_talks_to_a_socketio_relay():
    async def scenario():
        server = socketio.AsyncServer(async_mode="aiohttp")
        app = web.Application()
        server.attach(app)
        registered: list = []
        ended: list = []

        @server.on("register")
        async def register(sid, data):
            registered.append(data)
            await server.emit("peer-list", ["me", "other"], to=sid)

        @server.on("call-ended")
        async def call_ended(sid, data):
            ended.append(data)

        runner = web.AppRunner(app)
        await runner.setup()
        site = web.TCPSite(runner, "127.0.0.1", 0)
        await site.start()
        port = runner.addresses[0][1]
        try:
            channel = SocketIOSignalingChannel(f"http://127.0.0.1:{port}", "me")
            peer_lists: list = []
            states: list[bool] = []
            channel.on("peer-list", peer_lists.append)
            channel.set_state_listener(states.append)

            await channel.connect()
            await wait_until(lambda: peer_lists)
            await channel.send("call-ended", {"target": "other"})
            await wait_until(lambda: ended)

            assert registered == [{"userId": "me"}]
            assert peer_lists == [["me", "other"]]
            assert ended == [{"target": "other"}]

            await channel.disconnect()
            await channel.disconnect()
            assert channel.available is False
            assert states == [True, False]
            with pytest.raises(ChannelUnavailableError):
                await channel.send("call-ended", {"target": "other"})
        finally:
            await runner.cleanup()

    asyncio.run(scenario())


def test_socketio_channel_reports_unreachable_relay():
    async def scenario():
        channel = SocketIOSignalingChannel("http://127.0.0.1:9", "me")
        with pytest.raises(ChannelUnavailableError):
            await channel.connect()
        assert channel.available is False

    asyncio.run(scenario())


def test_build_channel_picks_the_configured_transport():
    channel = build_channel("me", relay_url="https://relay.example", transport="websocket")
    assert isinstance(channel, WebsocketSignalingChannel)
    assert channel._url == "wss://relay.example"
    assert channel.local_id == "me"

    assert isinstance(build_channel("me", relay_url="https://relay.example", transport="socketio"), SocketIOSignalingChannel)

    with pytest.raises(ValueError):
        build_channel("me", relay_url="https://relay.example", transport="carrier-pigeon")
