"""FastAPI app setup and dependency wiring."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, WebSocket
from fastapi.staticfiles import StaticFiles
from loguru import logger

from ..config.settings import Settings
from ..core.session import SessionManager
from .routes import build_router
from .websocket import handle_overlay_ws


def create_api(settings: Settings, manager: SessionManager) -> FastAPI:
    """Create FastAPI app with routes and WebSocket endpoints."""

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        await manager.shutdown()

    api = FastAPI(title="Overlay Relay", docs_url=None, redoc_url=None, lifespan=lifespan)
    api.state.manager = manager

    api.include_router(build_router(settings, manager))

    # Output pages connect to the bare host (`ws://host:port/?session=...`)
    @api.websocket("/")
    async def ws_root(ws: WebSocket):  # noqa: D401
        await handle_overlay_ws(ws, manager)

    @api.websocket("/ws")
    async def ws_overlay(ws: WebSocket):  # noqa: D401
        await handle_overlay_ws(ws, manager)

    if settings.static_dir is not None:
        if settings.static_dir.is_dir():
            api.mount("/", StaticFiles(directory=str(settings.static_dir), html=True), name="static")
            logger.info(f"Serving static assets from {settings.static_dir}")
        else:
            logger.warning(f"STATIC_DIR {settings.static_dir} is not a directory; static assets disabled")

    logger.info("API created")
    return api
