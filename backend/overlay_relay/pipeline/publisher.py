"""Atomic PNG publishing for the still-image export feed.

Per session three files live in the export directory:

- `<stem>.straight.png`       straight alpha
- `<stem>.premultiplied.png`  premultiplied alpha
- `<stem>.png`                whichever variant is the configured default

Each file is written to a temp file in the same directory and renamed into
place, so an HTTP reader never sees a half-written PNG. A failed write keeps
the previous artifacts.
"""

from __future__ import annotations

import asyncio
import os
import tempfile
from pathlib import Path
from typing import Optional, Sequence, Set
from urllib.parse import quote

from loguru import logger
from PIL import Image

from ..config.settings import ExportSettings
from ..core.logging import EXPORT
from ..integrations.base import BaseIntegration
from ..processors.guards import safe_file_stem
from .compositor import encode_png, transparent_png


def atomic_write(path: Path, data: bytes) -> None:
    fd, tmp = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as fp:
            fp.write(data)
        os.replace(tmp, path)
    except BaseException:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


class ExportPublisher:
    def __init__(
        self,
        settings: ExportSettings,
        integrations: Sequence[BaseIntegration] = (),
        base_url: str = "",
    ) -> None:
        self.directory = Path(settings.directory)
        self.width = settings.width
        self.height = settings.height
        self.default_alpha = settings.default_alpha
        self.public_url = settings.public_url
        self.base_url = base_url.rstrip("/")
        self.integrations = list(integrations)
        self._notifications: Set["asyncio.Task[None]"] = set()

    def path_for(self, session_id: str, alpha: Optional[str] = None) -> Path:
        stem = safe_file_stem(session_id)
        if alpha is None:
            return self.directory / f"{stem}.png"
        return self.directory / f"{stem}.{alpha}.png"

    def export_url(self, session_id: str) -> str:
        return f"{self.public_url}/atem-live/{quote(session_id, safe='')}.png"

    def absolute_url(self, session_id: str) -> str:
        """Export link for receivers on other machines; falls back to the server address."""
        if self.public_url:
            return self.export_url(session_id)
        return f"{self.base_url}{self.export_url(session_id)}"

    def has_export(self, session_id: str) -> bool:
        return self.path_for(session_id).is_file()

    def read(self, session_id: str, alpha: Optional[str] = None) -> Optional[bytes]:
        """Current PNG bytes for a session, or None if nothing is published."""
        if alpha == self.default_alpha:
            alpha = None
        try:
            return self.path_for(session_id, alpha).read_bytes()
        except FileNotFoundError:
            return None

    def placeholder_png(self) -> bytes:
        return transparent_png(self.width, self.height)

    def _write_variants(self, session_id: str, straight: bytes, premultiplied: bytes) -> bool:
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            atomic_write(self.path_for(session_id, "straight"), straight)
            atomic_write(self.path_for(session_id, "premultiplied"), premultiplied)
            default = straight if self.default_alpha == "straight" else premultiplied
            atomic_write(self.path_for(session_id), default)
        except OSError as exc:
            logger.error(f"Publishing export for session={session_id} failed: {exc}")
            return False
        return True

    async def publish(self, session_id: str, straight: Image.Image, premultiplied: Image.Image) -> bool:
        """Encode and write both variants, then notify integrations."""

        def _encode_and_write() -> bool:
            return self._write_variants(session_id, encode_png(straight), encode_png(premultiplied))

        ok = await asyncio.to_thread(_encode_and_write)
        if ok:
            logger.log(EXPORT, f"Published export for session={session_id} -> {self.path_for(session_id)}")
            self._notify(session_id)
        return ok

    async def publish_placeholder(self, session_id: str) -> bool:
        png = self.placeholder_png()
        ok = await asyncio.to_thread(self._write_variants, session_id, png, png)
        if ok:
            logger.log(EXPORT, f"Published transparent placeholder for session={session_id}")
        return ok

    def _notify(self, session_id: str) -> None:
        url = self.absolute_url(session_id)
        for integration in self.integrations:
            task = asyncio.get_running_loop().create_task(integration.on_export_published(session_id, url))
            self._notifications.add(task)
            task.add_done_callback(self._notifications.discard)

    async def drain(self) -> None:
        """Wait for in-flight notifications."""
        if self._notifications:
            await asyncio.gather(*list(self._notifications), return_exceptions=True)

    async def aclose(self) -> None:
        await self.drain()
        for integration in self.integrations:
            await integration.aclose()
