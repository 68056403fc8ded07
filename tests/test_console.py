from __future__ import annotations

import asyncio
import io

from calls.state import CallState, EndReason, Phase
from console.app import ConsoleApp, describe
from fakes import start_engine


def test_describe_renders_each_phase():
    base = dict(local_id="me", remote_peer="B")
    assert describe(CallState(phase=Phase.CALLING, **base)) == "Calling peer: B"
    assert describe(CallState(phase=Phase.CONNECTED, **base)) == "In call with: B"
    assert (
        describe(CallState(phase=Phase.RINGING_INCOMING, local_id="me", incoming_call_from="A"))
        == "Incoming call from: A (accept/reject)"
    )
    assert describe(CallState(phase=Phase.IDLE, local_id="me")) == "Idle"
    assert (
        describe(CallState(phase=Phase.IDLE, local_id="me", end_reason=EndReason.REJECTED_BY_PEER))
        == "Idle (last call: rejected by peer)"
    )


def test_console_drives_a_call(relay):
    async def scenario():
        a = await start_engine(relay, "A")
        b = await start_engine(relay, "B")
        await a.drain()

        out = io.StringIO()
        console = ConsoleApp(a, out=out)
        console.attach()

        assert await console.handle_line("peers") is True
        assert await console.handle_line("call") is True
        assert await console.handle_line("select B") is True
        assert await console.handle_line("call") is True
        await a.drain()
        await b.drain()
        assert await console.handle_line("dance") is True
        assert await console.handle_line("") is True
        assert await console.handle_line("quit") is False

        text = out.getvalue()
        assert "Available peers: B" in text
        assert "! No peer selected." in text
        assert "Selected B" in text
        assert "* Calling peer: B" in text
        assert "Unknown command: dance" in text
        assert b.phase is Phase.RINGING_INCOMING

    asyncio.run(scenario())


def test_console_run_stops_on_end_of_input(relay):
    async def scenario():
        a = await start_engine(relay, "A")
        out = io.StringIO()
        console = ConsoleApp(a, out=out)

        lines: asyncio.Queue[str | None] = asyncio.Queue()
        for line in ["state\n", "help\n", None]:
            lines.put_nowait(line)
        await console.run(lines)

        text = out.getvalue()
        assert text.count("Your ID: A") == 2
        assert "commands:" in text

    asyncio.run(scenario())
