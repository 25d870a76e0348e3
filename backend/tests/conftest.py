from __future__ import annotations

import os
import socket
from pathlib import Path
from typing import Any, List, Optional, Tuple

import pytest
from PIL import Image

from overlay_relay.config.settings import ExportSettings, Settings
from overlay_relay.core.state import StateSnapshot
from overlay_relay.pipeline.builder import ExportPipeline
from overlay_relay.pipeline.publisher import ExportPublisher


class NetworkBlockedError(RuntimeError):
    pass


def _blocked(*_args: Any, **_kwargs: Any) -> Any:
    raise NetworkBlockedError("Network access is disabled during tests. Set ALLOW_NETWORK=1 to allow it.")


@pytest.fixture(autouse=True)
def _disable_network(monkeypatch: pytest.MonkeyPatch) -> None:
    """Prevent accidental outbound network calls in unit tests."""
    if os.getenv("ALLOW_NETWORK") == "1":
        return
    monkeypatch.setattr(socket, "create_connection", _blocked)
    monkeypatch.setattr(socket, "getaddrinfo", _blocked)


class FakeWorker:
    """Stands in for the headless renderer; paints a fixed semi-transparent frame."""

    def __init__(self, width: int = 8, height: int = 4, error: Optional[BaseException] = None) -> None:
        self.width = width
        self.height = height
        self.error = error
        self.calls: List[Tuple[str, StateSnapshot]] = []
        self.released: List[str] = []
        self.closed = False

    async def render(self, session_id: str, snapshot: StateSnapshot) -> Image.Image:
        self.calls.append((session_id, snapshot))
        if self.error is not None:
            raise self.error
        return Image.new("RGBA", (self.width, self.height), (200, 100, 50, 128))

    def release(self, session_id: str) -> None:
        self.released.append(session_id)
        return None

    async def close(self) -> None:
        self.closed = True


def export_settings(directory: Path, **overrides: Any) -> ExportSettings:
    values = dict(enabled=True, directory=directory, width=8, height=4, debounce_ms=5)
    values.update(overrides)
    return ExportSettings(**values)


@pytest.fixture
def export_dir(tmp_path: Path) -> Path:
    return tmp_path / "exports"


@pytest.fixture
def make_pipeline(export_dir: Path):
    def _make(worker: Optional[FakeWorker] = None, **overrides: Any) -> ExportPipeline:
        publisher = ExportPublisher(export_settings(export_dir, **overrides))
        return ExportPipeline(worker or FakeWorker(), publisher)

    return _make


@pytest.fixture
def settings(export_dir: Path) -> Settings:
    return Settings(export=export_settings(export_dir, width=64, height=32))
