"""FastAPI routes binding the call engine to a browser front-end."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect

from api.dependencies import get_engine, get_ws_engine
from api.schemas import CallStateResponse, InitiateCallRequest, SelectTargetRequest
from calls.engine import SessionEngine
from calls.errors import CallError

if TYPE_CHECKING:  # pragma: no cover
    from calls.state import CallState

LOGGER = logging.getLogger(__name__)

router = APIRouter()


async def _run_command(engine: SessionEngine, command: Callable[[], Awaitable[None]]) -> CallStateResponse:
    try:
        await command()
    except CallError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc
    return CallStateResponse.from_state(engine.state)


@router.get("/state", response_model=CallStateResponse)
async def get_state(engine: SessionEngine = Depends(get_engine)) -> CallStateResponse:
    return CallStateResponse.from_state(engine.state)


@router.post("/target", response_model=CallStateResponse)
async def select_target(
    payload: SelectTargetRequest,
    engine: SessionEngine = Depends(get_engine),
) -> CallStateResponse:
    return await _run_command(engine, lambda: engine.select_target(payload.peer_id))


@router.post("/call", response_model=CallStateResponse)
async def initiate_call(
    payload: InitiateCallRequest | None = None,
    engine: SessionEngine = Depends(get_engine),
) -> CallStateResponse:
    peer_id = payload.peer_id if payload else None
    return await _run_command(engine, lambda: engine.initiate_call(peer_id))


@router.post("/accept", response_model=CallStateResponse)
async def accept_call(engine: SessionEngine = Depends(get_engine)) -> CallStateResponse:
    return await _run_command(engine, engine.accept_call)


@router.post("/reject", response_model=CallStateResponse)
async def reject_call(engine: SessionEngine = Depends(get_engine)) -> CallStateResponse:
    return await _run_command(engine, engine.reject_call)


@router.post("/hangup", response_model=CallStateResponse)
async def end_call(engine: SessionEngine = Depends(get_engine)) -> CallStateResponse:
    return await _run_command(engine, engine.end_call)


@router.post("/media/retry", response_model=CallStateResponse)
async def retry_local_media(engine: SessionEngine = Depends(get_engine)) -> CallStateResponse:
    return await _run_command(engine, engine.retry_local_media)


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


@router.websocket("/events")
async def call_events(websocket: WebSocket, engine: SessionEngine = Depends(get_ws_engine)) -> None:
    """Push a state snapshot on connect and after every change."""

    await websocket.accept()
    LOGGER.info("State feed client connected")
    updates: asyncio.Queue[CallState] = asyncio.Queue()
    unsubscribe = engine.subscribe(updates.put_nowait)
    closed = asyncio.create_task(_wait_for_disconnect(websocket))
    try:
        await websocket.send_json(CallStateResponse.from_state(engine.state).model_dump())
        while True:
            getter = asyncio.create_task(updates.get())
            done, _ = await asyncio.wait({getter, closed}, return_when=asyncio.FIRST_COMPLETED)
            if getter not in done:
                getter.cancel()
                break
            await websocket.send_json(CallStateResponse.from_state(getter.result()).model_dump())
    except WebSocketDisconnect:
        pass
    finally:
        closed.cancel()
        unsubscribe()
    LOGGER.info("State feed client disconnected")
