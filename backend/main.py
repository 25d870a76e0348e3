"""Minimal starter that delegates to the overlay_relay runner."""

from __future__ import annotations

import asyncio

from overlay_relay.pipeline.runner import AppRunner
from overlay_relay.core.logging import setup_logging


async def _main():
    setup_logging()
    app = AppRunner()
    await app.run()


if __name__ == "__main__":
    try:
        asyncio.run(_main())
    except KeyboardInterrupt:
        pass
