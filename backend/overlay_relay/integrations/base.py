"""Base integration class for outbound hooks on export events."""

from __future__ import annotations


class BaseIntegration:
    """Lifecycle hooks for integrations to react to app events."""

    async def on_export_published(self, session_id: str, export_url: str) -> None:  # pragma: no cover - interface
        pass

    async def aclose(self) -> None:  # pragma: no cover - interface
        pass
