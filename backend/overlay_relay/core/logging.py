"""Centralized Loguru logging setup.

Custom semantic levels are registered at import time so modules can log with
them (`logger.log(RELAY, ...)`) even before `setup_logging()` runs, e.g. in
tests. Call `setup_logging()` once at app startup to install the sinks.
"""

from __future__ import annotations

from loguru import logger
import os
import sys
from typing import Optional


RELAY = "RELAY"
EXPORT = "EXPORT"
HOOK = "HOOK"


def _ensure_level(name: str, no: int, color: str) -> None:
    try:
        logger.level(name)
    except ValueError:
        logger.level(name, no=no, color=color)


_ensure_level(RELAY, no=21, color="<cyan>")
_ensure_level(EXPORT, no=22, color="<magenta>")
_ensure_level(HOOK, no=23, color="<blue>")


def setup_logging(level: Optional[str] = None) -> None:
    """Configure Loguru sinks and levels.

    - Logs to stderr with a concise format suitable for an operator console.
    - Respects `LOG_LEVEL` env var (default: INFO) unless `level` is given.
    - Avoid duplicate handlers if called multiple times.
    """
    logger.remove()

    log_level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()

    logger.add(
        sys.stderr,
        level=log_level,
        backtrace=False,
        diagnose=False,
        format="<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <level>{message}</level>",
        colorize=True,
    )
