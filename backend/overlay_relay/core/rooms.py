"""Room membership: which connections belong to which session.

Delivery never awaits the network. Each `Client` owns a bounded outbound
queue that a per-connection writer task drains, so fan-out is a plain loop
of non-blocking enqueues and per-room order equals arrival order.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Dict, Iterator, List, Optional

from loguru import logger

from ..processors.messages import Raw

DEFAULT_MAX_PENDING = 256


class Client:
    """One connected socket, tagged with its session and role."""

    def __init__(self, session_id: str, role: str, *, max_pending: int = DEFAULT_MAX_PENDING) -> None:
        self.id = uuid.uuid4().hex[:8]
        self.session_id = session_id
        self.role = role
        self.closed = False
        self._outbox: "asyncio.Queue[Optional[Raw]]" = asyncio.Queue(maxsize=max_pending)

    def __repr__(self) -> str:
        return f"Client({self.id}, session={self.session_id!r}, role={self.role})"

    def deliver(self, payload: Raw) -> bool:
        """Enqueue a frame for the writer task. Returns False if dropped."""
        if self.closed:
            return False
        try:
            self._outbox.put_nowait(payload)
        except asyncio.QueueFull:
            logger.warning(f"{self!r} outbound queue full; dropping slow client")
            self.close()
            return False
        return True

    def close(self) -> None:
        """Stop accepting frames and wake the writer so it can exit."""
        if self.closed:
            return
        self.closed = True
        while not self._outbox.empty():
            self._outbox.get_nowait()
        self._outbox.put_nowait(None)

    async def next_frame(self) -> Optional[Raw]:
        """Wait for the next frame; None means the client was closed."""
        return await self._outbox.get()

    def pending(self) -> List[Raw]:
        """Drain queued frames without waiting."""
        frames: List[Raw] = []
        while not self._outbox.empty():
            frame = self._outbox.get_nowait()
            if frame is not None:
                frames.append(frame)
        return frames


class SessionRegistry:
    """Session id -> ordered set of connected clients."""

    def __init__(self) -> None:
        self._rooms: Dict[str, Dict[Client, None]] = {}

    def __contains__(self, client: object) -> bool:
        if not isinstance(client, Client):
            return False
        return client in self._rooms.get(client.session_id, ())

    def join(self, session_id: str, client: Client) -> int:
        room = self._rooms.setdefault(session_id, {})
        room[client] = None
        return len(room)

    def leave(self, client: Client) -> Optional[str]:
        """Remove `client`. Returns the session id if its room became empty.

        Safe to call repeatedly from both error and close paths.
        """
        room = self._rooms.get(client.session_id)
        if room is None or client not in room:
            return None
        del room[client]
        if room:
            return None
        del self._rooms[client.session_id]
        return client.session_id

    def members(self, session_id: str) -> List[Client]:
        return list(self._rooms.get(session_id, ()))

    def members_of(self, session_id: str) -> int:
        return len(self._rooms.get(session_id, ()))

    def broadcast(self, session_id: str, payload: Raw, exclude: Optional[Client] = None) -> int:
        """Deliver `payload` to every member of the room except `exclude`."""
        delivered = 0
        for client in self.members(session_id):
            if client is exclude:
                continue
            if client.deliver(payload):
                delivered += 1
        return delivered

    def sessions(self) -> List[str]:
        return list(self._rooms)

    def all_clients(self) -> Iterator[Client]:
        for room in list(self._rooms.values()):
            yield from list(room)

    def client_count(self) -> int:
        return sum(len(room) for room in self._rooms.values())
