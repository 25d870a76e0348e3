"""Debounced, single-flight export scheduling.

Every state change on a pinned session calls `trigger()`. Bursts are
collapsed by a short debounce timer; when it fires, exactly one worker task
per session drains a single-slot queue: if a render is already running the
pending request is folded into one `queued` flag, and the worker renders
again once the current render completes. The last state of a burst is
therefore always rendered and renders for one session never overlap.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, FrozenSet, Iterable, List, Optional

from loguru import logger

from ..core.logging import EXPORT


RenderFn = Callable[[str], Awaitable[None]]


class PinnedSessions:
    """Sessions enrolled for continuous export: everything, or an allow-list."""

    def __init__(self, universal: bool = False, ids: Iterable[str] = ()) -> None:
        self.universal = universal
        self._ids = set(ids)

    def is_pinned(self, session_id: str) -> bool:
        return self.universal or session_id in self._ids

    def pin(self, session_id: str) -> None:
        self._ids.add(session_id)

    def unpin(self, session_id: str) -> None:
        if self.universal:
            logger.debug(f"unpin {session_id!r} ignored: every session is exported")
            return
        self._ids.discard(session_id)

    @property
    def ids(self) -> FrozenSet[str]:
        return frozenset(self._ids)

    def as_list(self) -> List[str]:
        if self.universal:
            return ["*"]
        return sorted(self._ids)


@dataclass
class ExportJob:
    timer: Optional[asyncio.TimerHandle] = None
    task: Optional["asyncio.Task[None]"] = None
    running: bool = False
    queued: bool = False
    renders: int = 0


class ExportScheduler:
    """Per-session debounce timer plus a single worker per session."""

    def __init__(self, render: RenderFn, debounce: float = 0.035) -> None:
        self._render = render
        self._debounce = max(0.0, debounce)
        self._jobs: Dict[str, ExportJob] = {}

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._jobs

    def job(self, session_id: str) -> Optional[ExportJob]:
        return self._jobs.get(session_id)

    def is_running(self, session_id: str) -> bool:
        job = self._jobs.get(session_id)
        return bool(job and job.running)

    def trigger(self, session_id: str) -> None:
        """Start or restart the debounce window for `session_id`."""
        loop = asyncio.get_running_loop()
        job = self._jobs.setdefault(session_id, ExportJob())
        if job.timer is not None:
            job.timer.cancel()
        job.timer = loop.call_later(self._debounce, self._fire, session_id)

    def _fire(self, session_id: str) -> None:
        job = self._jobs.get(session_id)
        if job is None:
            return
        job.timer = None
        if job.running:
            job.queued = True
            return
        job.running = True
        job.task = asyncio.get_running_loop().create_task(
            self._drain(session_id, job), name=f"export:{session_id}"
        )

    async def _drain(self, session_id: str, job: ExportJob) -> None:
        try:
            while True:
                job.queued = False
                try:
                    await self._render(session_id)
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    logger.exception(f"Export render failed for session={session_id}: {exc}")
                job.renders += 1
                if not job.queued or self._jobs.get(session_id) is not job:
                    break
                logger.log(EXPORT, f"session={session_id} changed during render; rendering again")
        finally:
            job.running = False
            job.task = None

    def cancel(self, session_id: str) -> Optional["asyncio.Task[None]"]:
        """Drop the job for `session_id`; returns the cancelled worker, if any."""
        job = self._jobs.pop(session_id, None)
        if job is None:
            return None
        if job.timer is not None:
            job.timer.cancel()
            job.timer = None
        job.queued = False
        task = job.task
        if task is not None and not task.done():
            task.cancel()
            return task
        return None

    async def wait_idle(self, session_id: str) -> None:
        """Wait until no timer is pending and no render is running."""
        while True:
            job = self._jobs.get(session_id)
            if job is None or (job.timer is None and not job.running):
                return
            if job.task is not None:
                await asyncio.wait({job.task})
            else:
                await asyncio.sleep(max(self._debounce, 0.001))

    async def shutdown(self) -> None:
        tasks = [t for t in (self.cancel(sid) for sid in list(self._jobs)) if t is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
