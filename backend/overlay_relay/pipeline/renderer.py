"""Headless Chromium rendering of a session's overlay state.

`RenderPool` owns the browser and one persistent context+page per exporting
session, loaded from the same output page operators use as a browser source.
`RenderWorker` replays a cached `StateSnapshot` into that page through the
page's own message handler and captures a transparent screenshot.

Concurrency: a per-session lock is the render token (one render per page at
a time) and a pool-wide semaphore bounds renders across sessions.
"""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Set
from urllib.parse import quote

from loguru import logger
from PIL import Image
from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from ..core.logging import EXPORT
from ..core.state import StateSnapshot
from .compositor import decode_png


class RendererUnavailable(RuntimeError):
    """The rendering engine is not installed or failed to launch."""


class RenderError(RuntimeError):
    """Navigation, script or screenshot failure while rendering a session."""


# Marks the page as an export target and keeps it out of the relay rooms.
INIT_SCRIPT = """
window.__OVERLAY_EXPORT_MODE__ = true;
window.WebSocket = function () { throw new Error('relay disabled in export mode'); };
"""

APPLY_SCRIPT = """([fn, msg]) => {
  const apply = window[fn];
  if (typeof apply !== 'function') {
    throw new Error('render page does not expose ' + fn + '()');
  }
  apply(msg);
}"""

SETTLE_SCRIPT = """async () => {
  if (document.fonts && document.fonts.ready) {
    await document.fonts.ready;
  }
  await new Promise((resolve) => requestAnimationFrame(() => requestAnimationFrame(resolve)));
}"""


async def _close_context(session_id: str, context: BrowserContext) -> None:
    try:
        await context.close()
    except PlaywrightError as exc:
        logger.debug(f"Closing render page for session={session_id} failed: {exc}")


@dataclass
class PageEntry:
    session_id: str
    context: BrowserContext
    page: Page
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    last_used: float = field(default_factory=time.monotonic)

    async def close(self) -> None:
        async with self.lock:
            await _close_context(self.session_id, self.context)
        logger.log(EXPORT, f"Render page closed for session={self.session_id}")


class RenderPool:
    """Lazily launched browser with one page per session."""

    def __init__(
        self,
        *,
        url_template: str,
        width: int,
        height: int,
        max_pages: int = 16,
        max_concurrency: int = 4,
        timeout: float = 15.0,
        relaunch_cooldown: float = 30.0,
    ) -> None:
        self.url_template = url_template
        self.width = width
        self.height = height
        self.max_pages = max(1, max_pages)
        self.timeout = timeout
        self.relaunch_cooldown = relaunch_cooldown

        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._failed_at: Optional[float] = None
        self._launch_lock = asyncio.Lock()
        self._semaphore = asyncio.Semaphore(max(1, max_concurrency))
        self._pages: Dict[str, PageEntry] = {}
        # sessions whose page is being opened, and which of them were released meanwhile
        self._open_locks: Dict[str, asyncio.Lock] = {}
        self._opening: Set[str] = set()
        self._abandoned: Set[str] = set()
        self._closing: Set["asyncio.Task[None]"] = set()

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._pages

    def __len__(self) -> int:
        return len(self._pages)

    def url_for(self, session_id: str) -> str:
        return self.url_template.replace("{session}", quote(session_id, safe=""))

    async def _ensure_browser(self) -> Browser:
        async with self._launch_lock:
            if self._browser is not None and self._browser.is_connected():
                return self._browser
            if self._failed_at is not None and time.monotonic() - self._failed_at < self.relaunch_cooldown:
                raise RendererUnavailable("browser launch failed recently; waiting before retrying")
            try:
                if self._playwright is None:
                    self._playwright = await async_playwright().start()
                self._browser = await self._playwright.chromium.launch(
                    args=["--disable-dev-shm-usage", "--force-color-profile=srgb"]
                )
            except Exception as exc:
                self._failed_at = time.monotonic()
                self._browser = None
                await self._stop_playwright()
                logger.error(f"Chromium unavailable, exports fall back to placeholders: {exc}")
                raise RendererUnavailable(str(exc)) from exc
            self._failed_at = None
            logger.log(EXPORT, "Chromium launched for PNG export")
            return self._browser

    async def _stop_playwright(self) -> None:
        if self._playwright is None:
            return
        try:
            await self._playwright.stop()
        except Exception as exc:  # pragma: no cover - teardown
            logger.debug(f"Playwright stop failed: {exc}")
        self._playwright = None

    def _live(self, session_id: str) -> Optional[PageEntry]:
        entry = self._pages.get(session_id)
        if entry is not None and not entry.page.is_closed():
            return entry
        return None

    async def acquire(self, session_id: str) -> PageEntry:
        """Return the session's page, creating and navigating it on first use.

        Opening is serialized per session only, so a slow page load does not
        hold up other sessions.
        """
        entry = self._live(session_id)
        if entry is not None:
            return entry
        opening = self._open_locks.setdefault(session_id, asyncio.Lock())
        async with opening:
            entry = self._live(session_id)
            if entry is not None:
                return entry
            if session_id in self._pages:
                self.release(session_id)
            browser = await self._ensure_browser()
            # evict and reserve with no await in between
            self._evict_if_full()
            self._opening.add(session_id)
            self._abandoned.discard(session_id)
            try:
                entry = await self._open(session_id, browser)
            finally:
                self._opening.discard(session_id)
                abandoned = session_id in self._abandoned
                self._abandoned.discard(session_id)
            if abandoned:
                self._close_in_background(entry)
                raise RenderError(f"render page for session={session_id} released while opening")
            existing = self._live(session_id)
            if existing is not None:
                self._close_in_background(entry)
                return existing
            self._pages[session_id] = entry
            return entry

    async def _open(self, session_id: str, browser: Browser) -> PageEntry:
        context = await browser.new_context(
            viewport={"width": self.width, "height": self.height},
            device_scale_factor=1,
        )
        url = self.url_for(session_id)
        try:
            await context.add_init_script(INIT_SCRIPT)
            page = await context.new_page()
            page.set_default_timeout(self.timeout * 1000)
            await page.goto(url, wait_until="load")
        except BaseException as exc:
            # cancellation included: the context is not tracked anywhere yet
            await asyncio.shield(_close_context(session_id, context))
            if isinstance(exc, PlaywrightError):
                raise RenderError(f"could not open render page: {exc}") from exc
            raise
        logger.log(EXPORT, f"Render page opened for session={session_id} ({url})")
        return PageEntry(session_id, context, page)

    def _evict_if_full(self) -> None:
        if len(self._pages) + len(self._opening) < self.max_pages:
            return
        idle = [e for e in self._pages.values() if not e.lock.locked()]
        if not idle:
            logger.warning(f"All {len(self._pages)} render pages busy; exceeding max_pages")
            return
        victim = min(idle, key=lambda e: e.last_used)
        logger.log(EXPORT, f"Evicting idle render page for session={victim.session_id}")
        self.release(victim.session_id)

    @asynccontextmanager
    async def session(self, session_id: str) -> AsyncIterator[Page]:
        """Hold the render token for `session_id` and yield its page."""
        async with self._semaphore:
            entry = await self.acquire(session_id)
            async with entry.lock:
                if self._pages.get(session_id) is not entry:
                    raise RenderError("render page released while waiting")
                entry.last_used = time.monotonic()
                yield entry.page

    def _close_in_background(self, entry: PageEntry) -> "asyncio.Task[None]":
        task = asyncio.get_running_loop().create_task(entry.close(), name=f"render-close:{entry.session_id}")
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)
        return task

    def release(self, session_id: str) -> Optional["asyncio.Task[None]"]:
        """Detach the session's page now and close it in the background.

        Closing waits for the page's render token, so an in-flight render
        finishes or is cancelled before its context goes away. A page still
        being opened is closed as soon as it finishes loading.
        """
        if session_id in self._opening:
            self._abandoned.add(session_id)
        else:
            lock = self._open_locks.get(session_id)
            if lock is not None and not lock.locked():
                del self._open_locks[session_id]
        entry = self._pages.pop(session_id, None)
        if entry is None:
            return None
        return self._close_in_background(entry)

    async def close(self) -> None:
        for session_id in list(self._pages):
            self.release(session_id)
        if self._closing:
            await asyncio.gather(*list(self._closing), return_exceptions=True)
        if self._browser is not None:
            try:
                await self._browser.close()
            except PlaywrightError as exc:  # pragma: no cover - teardown
                logger.debug(f"Browser close failed: {exc}")
            self._browser = None
        await self._stop_playwright()


class RenderWorker:
    """Replays a snapshot into the session's page and captures it."""

    def __init__(self, pool: RenderPool, apply_function: str = "handleMessage") -> None:
        self.pool = pool
        self.apply_function = apply_function

    @staticmethod
    def effective_settings(snapshot: StateSnapshot) -> Optional[Dict[str, Any]]:
        """Settings the live show was cut with win over the cached document."""
        if snapshot.overlay is not None and snapshot.overlay.embedded_settings is not None:
            return snapshot.overlay.embedded_settings
        if snapshot.settings is not None:
            return snapshot.settings.settings
        return None

    @classmethod
    def frames(cls, snapshot: StateSnapshot) -> List[Dict[str, Any]]:
        """Messages that put a blank page into the snapshot's final frame."""
        frames: List[Dict[str, Any]] = []
        settings = cls.effective_settings(snapshot)
        if settings is not None:
            # final frame only, and no chroma fill over the alpha channel
            frames.append({"action": "settings", "settings": {**settings, "animation": "none", "chroma": "transparent"}})
        if snapshot.overlay is not None and snapshot.overlay_visible:
            frames.append({"action": "show", "data": snapshot.overlay.data})
        else:
            frames.append({"action": "clear"})
        if snapshot.ticker is not None and snapshot.ticker_visible:
            frames.append({"action": "show-ticker", "data": snapshot.ticker.data})
        else:
            frames.append({"action": "clear-ticker"})
        return frames

    async def render(self, session_id: str, snapshot: StateSnapshot) -> Image.Image:
        frames = self.frames(snapshot)
        try:
            async with self.pool.session(session_id) as page:
                for msg in frames:
                    await page.evaluate(APPLY_SCRIPT, [self.apply_function, msg])
                await page.evaluate(SETTLE_SCRIPT)
                data = await page.screenshot(type="png", omit_background=True)
        except PlaywrightError as exc:
            # drop the page so the next trigger starts from a fresh one
            self.pool.release(session_id)
            raise RenderError(f"render failed for session={session_id}: {exc}") from exc
        return decode_png(data)

    def release(self, session_id: str) -> Optional["asyncio.Task[None]"]:
        return self.pool.release(session_id)

    async def close(self) -> None:
        await self.pool.close()
