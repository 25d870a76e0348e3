"""Fan-out of client frames to room peers and server announcements."""

from __future__ import annotations

from typing import Any, Dict

from loguru import logger

from ..core.rooms import Client, SessionRegistry
from ..processors.messages import Raw, encode


class Broadcaster:
    """In-memory fan-out over the session registry."""

    def __init__(self, registry: SessionRegistry) -> None:
        self.registry = registry

    def relay(self, session_id: str, payload: Raw, sender: Client) -> int:
        """Relay a frame verbatim to every other member of the sender's room."""
        return self.registry.broadcast(session_id, payload, exclude=sender)

    def announce(self, event: Dict[str, Any]) -> int:
        """Send a server event to every connected client in every room."""
        frame = encode(event)
        sent = 0
        for client in self.registry.all_clients():
            if client.deliver(frame):
                sent += 1
        logger.debug(f"announce {event.get('action')} -> {sent} clients")
        return sent

    def send(self, client: Client, event: Dict[str, Any]) -> bool:
        """Unicast a server event to one client."""
        return client.deliver(encode(event))
