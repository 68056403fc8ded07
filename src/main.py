"""Entry point for the peer-to-peer audio call service (web front-end)."""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI

from api.routes import router as api_router
from calls.engine import SessionEngine
from config.settings import get_settings

LOGGER = logging.getLogger(__name__)


def build_engine() -> SessionEngine:
    """Engine wired to the configured relay and the local sound card."""

    # Lazy import to avoid loading aiortc/ffmpeg at module import time.
    from rtc.aiortc_platform import AiortcPlatform
    from signaling.factory import build_channel

    return SessionEngine(build_channel(), AiortcPlatform())


def create_app(engine_factory: Callable[[], SessionEngine] = build_engine) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = engine_factory()
        await engine.connect()
        await engine.drain()
        app.state.engine = engine
        LOGGER.info("Call engine ready as %s", engine.local_id)
        try:
            yield
        finally:
            app.state.engine = None
            await engine.disconnect()

    app = FastAPI(
        title="Peer Call",
        description="Direct peer-to-peer audio calls negotiated through a relay server.",
        lifespan=lifespan,
    )
    app.include_router(api_router, prefix="/api")
    return app


settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

app = create_app()


def serve() -> None:
    import uvicorn

    uvicorn.run(app, host=settings.api_host, port=settings.api_port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    serve()
