"""WebSocket endpoint handlers and helpers."""

from __future__ import annotations

import asyncio
import contextlib

from fastapi import WebSocket, WebSocketDisconnect
from loguru import logger
from starlette.websockets import WebSocketState

from ..core.rooms import Client
from ..core.session import SessionManager


async def _pump(ws: WebSocket, client: Client) -> None:
    """Drain the client's outbound queue onto the socket in order."""
    try:
        while True:
            frame = await client.next_frame()
            if frame is None:
                break
            if isinstance(frame, bytes):
                await ws.send_bytes(frame)
            else:
                await ws.send_text(frame)
    except Exception as exc:  # pragma: no cover - network
        logger.debug(f"{client!r} send failed: {exc}")
        return
    # Closed without a disconnect from the peer: the client fell too far behind.
    if ws.client_state == WebSocketState.CONNECTED:
        with contextlib.suppress(Exception):
            await ws.close(code=1013)


async def handle_overlay_ws(ws: WebSocket, manager: SessionManager) -> None:
    """Accept a relay socket (`?session=<id>&role=<control|output>`) and serve it."""
    # Join before accepting so the peer is a room member (with its replay
    # queued) by the time its handshake completes.
    client = manager.connect(ws.query_params.get("session"), ws.query_params.get("role"))
    writer = None
    try:
        await ws.accept()
        writer = asyncio.create_task(_pump(ws, client), name=f"ws-writer:{client.id}")
        while True:
            message = await ws.receive()
            if message["type"] == "websocket.disconnect":
                break
            if message.get("text") is not None:
                manager.handle_message(client, message["text"])
            elif message.get("bytes") is not None:
                manager.handle_message(client, message["bytes"])
    except WebSocketDisconnect:
        pass
    except Exception as exc:  # pragma: no cover
        logger.exception(f"WS error: {exc}")
    finally:
        manager.disconnect(client)
        if writer is not None:
            writer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await writer
