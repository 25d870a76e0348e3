"""Per-session visual state cache with replay-on-join.

Each session keeps the last settings document, the last overlay `show`, the
last ticker `show-ticker` and separate visibility flags. A `clear` only
flips the visibility flag: the cached payload survives so a renderer that
joins mid-service can reproduce the last on-air look. Listeners are notified
after every mutation so other layers (export) can react.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Optional

from loguru import logger

from ..processors.messages import (
    ClearMsg,
    ClearTickerMsg,
    Raw,
    SettingsMsg,
    ShowMsg,
    ShowTickerMsg,
    StateMessage,
    encode,
)


CLEAR_RAW = encode({"action": "clear"})
CLEAR_TICKER_RAW = encode({"action": "clear-ticker"})


@dataclass
class StateSnapshot:
    """Last-known visual state of one session."""

    settings: Optional[SettingsMsg] = None
    overlay: Optional[ShowMsg] = None
    overlay_visible: bool = False
    ticker: Optional[ShowTickerMsg] = None
    ticker_visible: bool = False

    def copy(self) -> "StateSnapshot":
        return replace(self)

    def to_dict(self) -> Dict[str, object]:
        return {
            "settings": self.settings.settings if self.settings else None,
            "overlay": self.overlay.data if self.overlay else None,
            "overlayVisible": self.overlay_visible,
            "ticker": self.ticker.data if self.ticker else None,
            "tickerVisible": self.ticker_visible,
        }


StateListener = Callable[[str, StateSnapshot], None]


@dataclass
class StateCache:
    """Container for per-session snapshots with change notifications."""

    _states: Dict[str, StateSnapshot] = field(default_factory=dict)
    _listeners: List[StateListener] = field(default_factory=list)

    def add_listener(self, listener: StateListener) -> None:
        """Register a listener called as `listener(session_id, snapshot)`."""
        self._listeners.append(listener)

    def _notify(self, session_id: str, snapshot: StateSnapshot) -> None:
        for listener in list(self._listeners):
            try:
                listener(session_id, snapshot)
            except Exception as exc:  # pragma: no cover - listener errors
                logger.warning(f"State listener error: {exc}")

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._states

    def __len__(self) -> int:
        return len(self._states)

    def update(self, session_id: str, message: StateMessage) -> StateSnapshot:
        """Apply the mutation named by `message` and return a copy of the result."""
        state = self._states.setdefault(session_id, StateSnapshot())
        if isinstance(message, SettingsMsg):
            state.settings = message
        elif isinstance(message, ShowMsg):
            state.overlay = message
            state.overlay_visible = True
        elif isinstance(message, ClearMsg):
            state.overlay_visible = False
        elif isinstance(message, ShowTickerMsg):
            state.ticker = message
            state.ticker_visible = True
        elif isinstance(message, ClearTickerMsg):
            state.ticker_visible = False
        else:
            raise TypeError(f"not a state message: {type(message).__name__}")
        logger.debug(f"state[{session_id}] <- {type(message).__name__}")
        snapshot = state.copy()
        self._notify(session_id, snapshot)
        return snapshot

    def snapshot(self, session_id: str) -> Optional[StateSnapshot]:
        state = self._states.get(session_id)
        return state.copy() if state is not None else None

    def drop(self, session_id: str) -> None:
        self._states.pop(session_id, None)

    def replay(self, session_id: str) -> List[Raw]:
        """Frames that bring a freshly joined renderer to the current look.

        Order: settings, overlay show (plus an explicit clear when it is not
        on air), ticker show (plus an explicit clear-ticker likewise).
        """
        state = self._states.get(session_id)
        if state is None:
            return []
        frames: List[Raw] = []
        if state.settings is not None:
            frames.append(state.settings.raw)
        if state.overlay is not None:
            frames.append(state.overlay.raw)
            if not state.overlay_visible:
                frames.append(CLEAR_RAW)
        if state.ticker is not None:
            frames.append(state.ticker.raw)
            if not state.ticker_visible:
                frames.append(CLEAR_TICKER_RAW)
        return frames
