"""HTTP routes: health and the live PNG export feed."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import JSONResponse, Response

from ..config.settings import Settings
from ..core.session import SessionManager
from ..processors.guards import normalize_session_id, parse_alpha_mode


PNG_HEADERS = {"Cache-Control": "no-store"}


def build_router(settings: Settings, manager: SessionManager) -> APIRouter:
    router = APIRouter()

    def _png(session: Optional[str], alpha: Optional[str]) -> Response:
        pipeline = manager.pipeline
        if not manager.export_enabled or pipeline is None:
            raise HTTPException(status_code=404, detail="ATEM export disabled")
        sid = normalize_session_id(session)
        mode = parse_alpha_mode(alpha, settings.export.default_alpha)
        data = pipeline.publisher.read(sid, mode)
        if data is None:
            data = pipeline.publisher.placeholder_png()
        return Response(content=data, media_type="image/png", headers=PNG_HEADERS)

    @router.get("/healthz")
    async def healthz() -> JSONResponse:
        return JSONResponse(
            {
                "ok": True,
                "sessions": len(manager.sessions()),
                "clients": manager.registry.client_count(),
                "export": {"enabled": manager.export_enabled, "pinned": manager.pinned.as_list()},
            }
        )

    @router.get("/atem-live.png")
    async def atem_live(session: Optional[str] = None, alpha: Optional[str] = Query(default=None)) -> Response:
        return _png(session, alpha)

    @router.get("/atem-live/{session_id}.png")
    async def atem_live_session(session_id: str, alpha: Optional[str] = Query(default=None)) -> Response:
        return _png(session_id, alpha)

    @router.get("/api/export/sessions")
    async def export_sessions() -> JSONResponse:
        live = manager.sessions()
        return JSONResponse(
            {
                "enabled": manager.export_enabled,
                "pinned": manager.pinned.as_list(),
                "sessions": [
                    {
                        "sessionId": sid,
                        "clients": manager.members_of(sid),
                        "pinned": manager.pinned.is_pinned(sid),
                        "exportUrl": manager.export_url(sid),
                    }
                    for sid in live
                ],
            }
        )

    return router
