"""Webhook notification after a session's PNG export is refreshed.

POSTs `{event, sessionId, exportUrl, timestamp}` as JSON. When configured,
adds `Authorization: Bearer <token>` and an `X-Overlay-Signature` header
carrying `sha256=<hex HMAC of the body>` so receivers can verify origin.
Failures are logged and dropped; the timeout bounds how long a slow
endpoint can hold a connection.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx
from loguru import logger

from ..config.settings import WebhookSettings
from ..core.logging import HOOK
from .base import BaseIntegration


def sign(secret: str, body: bytes) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


class WebhookNotifier(BaseIntegration):
    def __init__(self, settings: WebhookSettings, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.settings = settings
        self._client = httpx.AsyncClient(timeout=settings.timeout, transport=transport)

    def build_payload(self, session_id: str, export_url: str) -> Dict[str, Any]:
        return {
            "event": "atem-export",
            "sessionId": session_id,
            "exportUrl": export_url,
            "timestamp": datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
        }

    def build_headers(self, body: bytes) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.settings.token:
            headers["Authorization"] = f"Bearer {self.settings.token}"
        if self.settings.secret:
            headers["X-Overlay-Signature"] = sign(self.settings.secret, body)
        return headers

    async def on_export_published(self, session_id: str, export_url: str) -> None:
        if not self.settings.url:
            return
        body = json.dumps(self.build_payload(session_id, export_url)).encode("utf-8")
        try:
            resp = await self._client.post(self.settings.url, content=body, headers=self.build_headers(body))
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.warning(f"Webhook for session={session_id} rejected: HTTP {exc.response.status_code}")
            return
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.warning(f"Webhook for session={session_id} failed: {exc!r}")
            return
        logger.log(HOOK, f"Webhook delivered for session={session_id} ({resp.status_code})")

    async def aclose(self) -> None:
        await self._client.aclose()
