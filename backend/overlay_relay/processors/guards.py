"""Normalization guards applied to values arriving from the network."""

from __future__ import annotations

import hashlib
import re
from typing import Optional

DEFAULT_SESSION = "default"
ROLES = frozenset({"control", "output"})

_UNSAFE = re.compile(r"[^A-Za-z0-9_-]+")
_MAX_STEM = 64


def normalize_session_id(value: Optional[str]) -> str:
    """Return a non-empty session id; missing or blank ids map to 'default'."""
    if value is None:
        return DEFAULT_SESSION
    text = str(value).strip()
    return text or DEFAULT_SESSION


def normalize_role(value: Optional[str]) -> str:
    role = (value or "").strip().lower()
    return role if role in ROLES else "unknown"


def parse_alpha_mode(value: Optional[str], default: str) -> str:
    mode = (value or "").strip().lower()
    if mode in ("straight", "premultiplied"):
        return mode
    return default


def safe_file_stem(session_id: str) -> str:
    """Map a session id onto a filesystem-safe file stem.

    Ids that are already safe are kept verbatim. Anything else is sanitized
    and suffixed with a short digest so distinct ids never share a file.
    """
    if session_id and len(session_id) <= _MAX_STEM and not _UNSAFE.search(session_id):
        return session_id
    digest = hashlib.sha1(session_id.encode("utf-8")).hexdigest()[:10]
    cleaned = _UNSAFE.sub("_", session_id).strip("_")[: _MAX_STEM - 11] or "session"
    return f"{cleaned}-{digest}"
