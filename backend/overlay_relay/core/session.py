"""Session manager: the single mutation API over rooms, state and export.

One `SessionManager` owns the room registry, the state cache, the pinned
session set and the export scheduler. The WebSocket layer only calls
`connect`, `handle_message` and `disconnect`; nothing here awaits network
or rendering work, so the live relay keeps working whatever the export
side is doing.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Set

from loguru import logger

from ..api.events import Broadcaster
from ..core.logging import RELAY
from ..pipeline.scheduler import ExportScheduler, PinnedSessions
from ..processors.guards import normalize_role, normalize_session_id
from ..processors.messages import (
    STATE_MESSAGES,
    ExportConfigMsg,
    ExportRefreshMsg,
    ExportStatusMsg,
    Message,
    Raw,
    decode,
)
from .rooms import Client, SessionRegistry
from .state import StateCache, StateSnapshot

if TYPE_CHECKING:  # pragma: no cover
    from ..config.settings import Settings
    from ..pipeline.builder import ExportPipeline


class SessionManager:
    """Owns every per-session collection and the export side-channel."""

    def __init__(
        self,
        *,
        pipeline: Optional["ExportPipeline"] = None,
        pinned: Optional[PinnedSessions] = None,
        export_enabled: bool = False,
        debounce: float = 0.035,
    ) -> None:
        self.registry = SessionRegistry()
        self.cache = StateCache()
        self.broadcaster = Broadcaster(self.registry)
        self.pinned = pinned or PinnedSessions()
        self.pipeline = pipeline
        self.export_enabled = bool(export_enabled and pipeline is not None)
        self.scheduler = ExportScheduler(self._render, debounce=debounce)
        self._cleanup: Set["asyncio.Task[Any]"] = set()
        self.cache.add_listener(self._on_state_changed)

    @classmethod
    def from_settings(cls, settings: "Settings", pipeline: Optional["ExportPipeline"] = None) -> "SessionManager":
        exp = settings.export
        return cls(
            pipeline=pipeline if exp.enabled else None,
            pinned=PinnedSessions(exp.pin_all, exp.pinned),
            export_enabled=exp.enabled,
            debounce=exp.debounce_secs,
        )

    # -- membership -------------------------------------------------------

    def connect(self, session_id: Optional[str], role: Optional[str]) -> Client:
        """Join a new client; output clients get the replay before live traffic."""
        sid = normalize_session_id(session_id)
        client = Client(sid, normalize_role(role))
        size = self.registry.join(sid, client)
        logger.log(RELAY, f"[WS+] {client.role:<8} session={sid}  (room: {size} clients)")
        if client.role == "output":
            for frame in self.cache.replay(sid):
                client.deliver(frame)
        return client

    def disconnect(self, client: Client) -> None:
        """Remove a client. Idempotent; the last one out tears the session down."""
        client.close()
        if client not in self.registry:
            return
        emptied = self.registry.leave(client)
        logger.log(RELAY, f"[WS-] {client.role:<8} session={client.session_id}")
        if emptied is not None:
            self._teardown(emptied)

    def members_of(self, session_id: str) -> int:
        return self.registry.members_of(session_id)

    def _teardown(self, session_id: str) -> None:
        self.cache.drop(session_id)
        cancelled = self.scheduler.cancel(session_id)
        if cancelled is not None:
            self._track(cancelled)
        if self.pipeline is not None:
            released = self.pipeline.release(session_id)
            if released is not None:
                self._track(released)
        logger.log(RELAY, f"session={session_id} empty; state and export resources released")

    def _track(self, task: "asyncio.Task[Any]") -> None:
        self._cleanup.add(task)
        task.add_done_callback(self._cleanup.discard)

    # -- messages ---------------------------------------------------------

    def handle_message(self, client: Client, raw: Raw) -> Message:
        """Apply one client frame: cache, relay, export bookkeeping."""
        msg = decode(raw)
        sid = client.session_id
        if isinstance(msg, STATE_MESSAGES):
            self.cache.update(sid, msg)
            self.broadcaster.relay(sid, msg.raw, client)
        elif isinstance(msg, ExportConfigMsg):
            self._configure_export(client, msg)
        elif isinstance(msg, ExportStatusMsg):
            target = normalize_session_id(msg.session_id or sid)
            self.broadcaster.send(client, self.export_status(target))
        elif isinstance(msg, ExportRefreshMsg):
            target = normalize_session_id(msg.session_id or sid)
            self.request_export(target)
        else:
            self.broadcaster.relay(sid, msg.raw, client)
        return msg

    def _configure_export(self, client: Client, msg: ExportConfigMsg) -> None:
        target = normalize_session_id(msg.session_id or client.session_id)
        if msg.pin:
            self.pinned.pin(target)
        else:
            self.pinned.unpin(target)
        logger.info(f"Export pin {'on' if msg.pin else 'off'} for session={target}; pinned={self.pinned.as_list()}")
        self.broadcaster.announce(self.export_status(target))
        if msg.pin:
            self.request_export(target)

    def export_url(self, session_id: str) -> Optional[str]:
        if not self.export_enabled or self.pipeline is None:
            return None
        return self.pipeline.publisher.export_url(session_id)

    def export_status(self, session_id: str) -> Dict[str, Any]:
        return {
            "action": "atem-export-config-ack",
            "sessionId": session_id,
            "pinCurrentSession": self.pinned.is_pinned(session_id),
            "pinnedSessions": self.pinned.as_list(),
            "exportUrl": self.export_url(session_id),
            "enabled": self.export_enabled,
        }

    # -- export -----------------------------------------------------------

    def should_export(self, session_id: str) -> bool:
        return self.export_enabled and self.pinned.is_pinned(session_id)

    def request_export(self, session_id: str) -> bool:
        """Schedule a debounced render if the session is exported and live."""
        if not self.should_export(session_id) or self.registry.members_of(session_id) == 0:
            return False
        self.scheduler.trigger(session_id)
        return True

    def _on_state_changed(self, session_id: str, _snapshot: StateSnapshot) -> None:
        if self.should_export(session_id):
            self.scheduler.trigger(session_id)

    async def _render(self, session_id: str) -> None:
        if self.pipeline is None or self.registry.members_of(session_id) == 0:
            return
        snapshot = self.cache.snapshot(session_id) or StateSnapshot()
        await self.pipeline.export(session_id, snapshot)

    # -- lifecycle --------------------------------------------------------

    def sessions(self) -> List[str]:
        return self.registry.sessions()

    async def shutdown(self) -> None:
        for client in list(self.registry.all_clients()):
            client.close()
        await self.scheduler.shutdown()
        if self._cleanup:
            await asyncio.gather(*list(self._cleanup), return_exceptions=True)
        if self.pipeline is not None:
            await self.pipeline.aclose()
        logger.info("Session manager stopped")
