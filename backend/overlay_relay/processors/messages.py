"""Wire message decoding.

Client frames are decoded exactly once, at the connection boundary, into one
of the message types below. Every variant keeps the raw frame so relaying
and replay stay byte-identical to what the sender produced. Frames that do
not match a known action become `Unrecognized` and are relayed untouched.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

Raw = Union[str, bytes]


@dataclass(frozen=True)
class SettingsMsg:
    raw: Raw
    settings: Dict[str, Any]


@dataclass(frozen=True)
class ShowMsg:
    raw: Raw
    data: Any
    embedded_settings: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class ClearMsg:
    raw: Raw


@dataclass(frozen=True)
class ShowTickerMsg:
    raw: Raw
    data: Any


@dataclass(frozen=True)
class ClearTickerMsg:
    raw: Raw


@dataclass(frozen=True)
class ExportConfigMsg:
    raw: Raw
    session_id: Optional[str]
    pin: bool


@dataclass(frozen=True)
class ExportStatusMsg:
    raw: Raw
    session_id: Optional[str]


@dataclass(frozen=True)
class ExportRefreshMsg:
    raw: Raw
    session_id: Optional[str]


@dataclass(frozen=True)
class Unrecognized:
    raw: Raw


StateMessage = Union[SettingsMsg, ShowMsg, ClearMsg, ShowTickerMsg, ClearTickerMsg]
ExportControlMessage = Union[ExportConfigMsg, ExportStatusMsg, ExportRefreshMsg]
Message = Union[StateMessage, ExportControlMessage, Unrecognized]

STATE_MESSAGES = (SettingsMsg, ShowMsg, ClearMsg, ShowTickerMsg, ClearTickerMsg)
EXPORT_MESSAGES = (ExportConfigMsg, ExportStatusMsg, ExportRefreshMsg)


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _session_field(obj: Dict[str, Any]) -> Optional[str]:
    value = obj.get("sessionId")
    if value is None:
        return None
    return str(value)


def decode(raw: Raw) -> Message:
    """Decode a raw client frame into a typed message."""
    if not isinstance(raw, str):
        return Unrecognized(raw)
    try:
        obj = json.loads(raw)
    except ValueError:
        return Unrecognized(raw)
    if not isinstance(obj, dict):
        return Unrecognized(raw)

    action = obj.get("action")
    if action == "settings":
        settings = obj.get("settings")
        if isinstance(settings, dict):
            return SettingsMsg(raw, settings)
    elif action == "show":
        if "data" in obj:
            embedded = obj.get("settings")
            return ShowMsg(raw, obj["data"], embedded if isinstance(embedded, dict) else None)
    elif action == "clear":
        return ClearMsg(raw)
    elif action == "show-ticker":
        if "data" in obj:
            return ShowTickerMsg(raw, obj["data"])
    elif action == "clear-ticker":
        return ClearTickerMsg(raw)
    elif action == "atem-export-config":
        return ExportConfigMsg(raw, _session_field(obj), _truthy(obj.get("pinCurrentSession")))
    elif action == "atem-export-status":
        return ExportStatusMsg(raw, _session_field(obj))
    elif action == "atem-export-refresh":
        return ExportRefreshMsg(raw, _session_field(obj))
    return Unrecognized(raw)


def encode(payload: Dict[str, Any]) -> str:
    """Serialize a server-originated message."""
    return json.dumps(payload, separators=(",", ":"))
