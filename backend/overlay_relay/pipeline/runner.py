"""Application runner: wires settings, sessions, export pipeline and the API."""

from __future__ import annotations

import socket
from typing import List, Optional

import uvicorn
from loguru import logger

from ..api.server import create_api
from ..config.settings import Settings
from ..core.logging import setup_logging
from ..core.session import SessionManager
from .builder import ExportPipeline, build_export_pipeline


def lan_addresses() -> List[str]:
    """Best-effort IPv4 addresses other devices on the network can reach."""
    addrs = set()
    try:
        for info in socket.getaddrinfo(socket.gethostname(), None, socket.AF_INET):
            addrs.add(info[4][0])
    except OSError:
        pass
    return sorted(a for a in addrs if not a.startswith("127."))


class AppRunner:
    """Coordinates settings, the session manager and the HTTP/WS server."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or Settings.load()
        self.pipeline: Optional[ExportPipeline] = None
        if self.settings.export.enabled:
            self.pipeline = build_export_pipeline(self.settings)
        self.manager = SessionManager.from_settings(self.settings, self.pipeline)
        self.api = create_api(self.settings, self.manager)

    def _banner(self) -> None:
        port = self.settings.port
        logger.info(f"Local (this machine):   http://localhost:{port}")
        for ip in lan_addresses():
            logger.info(f"Network (tablet/phone): http://{ip}:{port}")
        if self.settings.export.enabled:
            logger.info(f"ATEM export feed:       http://localhost:{port}/atem-live/<session>.png")
        else:
            logger.info("ATEM export disabled (set ATEM_EXPORT_ENABLED=1 to enable)")

    async def run(self) -> None:
        """Serve until cancelled; the app lifespan shuts the manager down."""
        setup_logging(self.settings.log_level)
        self._banner()
        server = uvicorn.Server(
            uvicorn.Config(
                self.api,
                host=self.settings.host,
                port=self.settings.port,
                log_level=self.settings.log_level.lower(),
                lifespan="on",
            )
        )
        await server.serve()
