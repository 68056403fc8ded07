"""Terminal front-end for the call engine.

Commands are read line by line from stdin:

    peers | select <id> | call [id] | accept | reject | hangup | media | state | help | quit
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import TextIO

from calls.engine import SessionEngine
from calls.errors import CallError
from calls.state import CallState, Phase
from config.settings import get_settings

LOGGER = logging.getLogger(__name__)

HELP = "commands: peers, select <id>, call [id], accept, reject, hangup, media, state, help, quit"


def describe(state: CallState) -> str:
    if state.phase is Phase.RINGING_INCOMING:
        return f"Incoming call from: {state.incoming_call_from} (accept/reject)"
    if state.phase is Phase.CALLING:
        return f"Calling peer: {state.remote_peer}"
    if state.phase is Phase.NEGOTIATING:
        return f"Connecting with: {state.remote_peer}"
    if state.phase is Phase.CONNECTED:
        return f"In call with: {state.remote_peer}"
    if state.end_reason is not None:
        return f"Idle (last call: {state.end_reason.value.replace('_', ' ')})"
    return "Idle"


class ConsoleApp:
    def __init__(self, engine: SessionEngine, out: TextIO | None = None) -> None:
        self._engine = engine
        self._out = out or sys.stdout
        self._last_line: str | None = None

    def attach(self) -> None:
        self._engine.subscribe(self._on_state)
        self._engine.subscribe_errors(self._on_error)

    def _print(self, text: str) -> None:
        print(text, file=self._out, flush=True)

    def _on_state(self, state: CallState) -> None:
        line = describe(state)
        if line != self._last_line:
            self._last_line = line
            self._print(f"* {line}")

    def _on_error(self, error: CallError) -> None:
        self._print(f"! {error.detail}")

    async def handle_line(self, line: str) -> bool:
        """Run one command. Returns False when the user asked to quit."""

        parts = line.split()
        if not parts:
            return True
        name, args = parts[0].lower(), parts[1:]

        if name in {"quit", "exit"}:
            return False
        if name == "help":
            self._print(HELP)
            return True
        if name == "peers":
            peers = self._engine.peers
            self._print("Available peers: " + (", ".join(peers) if peers else "(none)"))
            return True
        if name == "state":
            state = self._engine.state
            self._print(f"Your ID: {state.local_id}")
            self._print(describe(state))
            return True

        try:
            if name == "select" and len(args) == 1:
                await self._engine.select_target(args[0])
                self._print(f"Selected {args[0]}")
            elif name == "call" and len(args) <= 1:
                await self._engine.initiate_call(args[0] if args else None)
            elif name == "accept" and not args:
                await self._engine.accept_call()
            elif name == "reject" and not args:
                await self._engine.reject_call()
            elif name in {"hangup", "end"} and not args:
                await self._engine.end_call()
            elif name == "media" and not args:
                await self._engine.retry_local_media()
            else:
                self._print(f"Unknown command: {line.strip()}. {HELP}")
        except CallError:
            # Already printed through the error subscription.
            LOGGER.debug("Command %s refused", name)
        return True

    async def run(self, lines: asyncio.Queue[str | None]) -> None:
        self._print(f"Your ID: {self._engine.local_id}")
        self._print(HELP)
        while True:
            line = await lines.get()
            if line is None or not await self.handle_line(line):
                return


async def _pump_stdin(lines: asyncio.Queue[str | None]) -> None:
    while True:
        line = await asyncio.to_thread(sys.stdin.readline)
        if not line:
            await lines.put(None)
            return
        await lines.put(line)


def _parse_args() -> argparse.Namespace:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Peer-to-peer audio calls from the terminal")
    parser.add_argument("--relay-url", default=settings.relay_url)
    parser.add_argument("--relay-transport", choices=["socketio", "websocket"], default=settings.relay_transport)
    parser.add_argument("--peer-id", default=settings.local_peer_id)
    parser.add_argument("--input-device", default=settings.audio_input_device)
    parser.add_argument("--input-format", default=settings.audio_input_format)
    parser.add_argument("--output", type=Path, default=settings.audio_output_path)
    return parser.parse_args()


async def _amain() -> None:
    # Lazy import to avoid loading aiortc/ffmpeg at module import time.
    from rtc.aiortc_platform import AiortcPlatform
    from signaling.factory import build_channel

    args = _parse_args()
    channel = build_channel(args.peer_id, relay_url=args.relay_url, transport=args.relay_transport)
    platform = AiortcPlatform(
        input_device=args.input_device,
        input_format=args.input_format,
        output_path=args.output,
    )
    engine = SessionEngine(channel, platform)
    app = ConsoleApp(engine)
    app.attach()

    lines: asyncio.Queue[str | None] = asyncio.Queue()
    pump = asyncio.create_task(_pump_stdin(lines))
    await engine.connect()
    try:
        await app.run(lines)
    finally:
        pump.cancel()
        await engine.disconnect()


def main() -> None:
    logging.basicConfig(
        level=get_settings().log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    asyncio.run(_amain())


if __name__ == "__main__":
    main()
