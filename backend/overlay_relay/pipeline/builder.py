"""Export pipeline builder: renderer -> compositor -> publisher.

The scheduler calls `ExportPipeline.export()` with the session's current
snapshot. Export is best-effort: a missing browser yields a transparent
placeholder for sessions that have never been exported, any other render
failure keeps the last published frame.
"""

from __future__ import annotations

import asyncio
import socket
from typing import List, Optional

from loguru import logger

from ..config.settings import Settings
from ..core.logging import EXPORT
from ..core.state import StateSnapshot
from ..integrations.base import BaseIntegration
from ..integrations.webhook import WebhookNotifier
from .compositor import premultiply
from .publisher import ExportPublisher
from .renderer import RenderError, RendererUnavailable, RenderPool, RenderWorker


class ExportPipeline:
    """Renders a snapshot and publishes both alpha variants."""

    def __init__(self, worker: RenderWorker, publisher: ExportPublisher) -> None:
        self.worker = worker
        self.publisher = publisher

    async def export(self, session_id: str, snapshot: StateSnapshot) -> bool:
        try:
            straight = await self.worker.render(session_id, snapshot)
        except RendererUnavailable as exc:
            logger.warning(f"Renderer unavailable for session={session_id}: {exc}")
            if not self.publisher.has_export(session_id):
                await self.publisher.publish_placeholder(session_id)
            return False
        except RenderError as exc:
            logger.error(f"{exc}; keeping previous export")
            return False
        premultiplied = await asyncio.to_thread(premultiply, straight)
        logger.log(EXPORT, f"Rendered session={session_id} ({straight.width}x{straight.height})")
        return await self.publisher.publish(session_id, straight, premultiplied)

    def release(self, session_id: str) -> Optional["asyncio.Task[None]"]:
        return self.worker.release(session_id)

    async def aclose(self) -> None:
        await self.worker.close()
        await self.publisher.aclose()


def server_base_url(settings: Settings) -> str:
    """`http://host:port` of this server, naming the machine when bound to all interfaces."""
    host = settings.host
    if host in ("", "0.0.0.0", "::"):
        host = socket.gethostname() or "localhost"
    return f"http://{host}:{settings.port}"


def build_export_pipeline(settings: Settings) -> ExportPipeline:
    """Create the render pool, worker, publisher and webhook integration."""
    exp = settings.export
    pool = RenderPool(
        url_template=exp.render_url,
        width=exp.width,
        height=exp.height,
        max_pages=exp.max_pages,
        max_concurrency=exp.max_concurrency,
        timeout=exp.render_timeout,
        relaunch_cooldown=exp.relaunch_cooldown,
    )
    worker = RenderWorker(pool, apply_function=exp.apply_function)

    integrations: List[BaseIntegration] = []
    if settings.webhook.enabled:
        integrations.append(WebhookNotifier(settings.webhook))

    publisher = ExportPublisher(exp, integrations, base_url=server_base_url(settings))
    logger.info(f"Export pipeline ready (dir={exp.directory}, render_url={exp.render_url})")
    return ExportPipeline(worker, publisher)
