"""Shared FastAPI dependencies.

Separated to avoid circular imports between route modules.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import HTTPException, Request, WebSocket

if TYPE_CHECKING:  # pragma: no cover
    from calls.engine import SessionEngine


def _engine_from_state(state) -> SessionEngine:
    engine = getattr(state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Call engine not started.")
    return engine


def get_engine(request: Request) -> SessionEngine:
    return _engine_from_state(request.app.state)


def get_ws_engine(websocket: WebSocket) -> SessionEngine:
    return _engine_from_state(websocket.app.state)
