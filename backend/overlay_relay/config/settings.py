"""Application settings and configuration loading.

Responsibilities:
- Load environment variables (supports both repo root `.env` and `backend/.env`).
- Load an optional YAML config file (`OVERLAY_CONFIG_PATH`) with `server`,
  `export` and `webhook` sections.
- Provide typed, validated values. Environment variables win over YAML.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, Mapping, Optional

import yaml
from dotenv import load_dotenv
from loguru import logger


ALPHA_MODES = ("straight", "premultiplied")

DEFAULT_RENDER_URL = "http://127.0.0.1:{port}/output.html?session={session}&export=1"

MIN_DIMENSION = 16
MAX_DIMENSION = 7680


def _as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in {"1", "true", "yes", "on"}:
        return True
    if text in {"0", "false", "no", "off", ""}:
        return False
    logger.warning(f"Invalid boolean {value!r}, using {default}")
    return default


def _as_int(value: Any, default: int, *, name: str) -> int:
    if value is None or value == "":
        return default
    try:
        return int(str(value).strip())
    except ValueError:
        logger.warning(f"Invalid integer for {name}: {value!r}, using {default}")
        return default


def _as_float(value: Any, default: float, *, name: str) -> float:
    if value is None or value == "":
        return default
    try:
        return float(str(value).strip())
    except ValueError:
        logger.warning(f"Invalid number for {name}: {value!r}, using {default}")
        return default


def _clamp_dimension(value: int) -> int:
    return max(MIN_DIMENSION, min(MAX_DIMENSION, value))


def parse_pinned(sessions: Any, single: Any = None) -> tuple[bool, FrozenSet[str]]:
    """Parse the pinned-session config into `(universal, ids)`.

    `sessions` is a comma-separated string or a list; `*` anywhere means
    every session is exported. `single` is merged into the allow-list.
    """
    if isinstance(sessions, (list, tuple, set)):
        items = [str(s) for s in sessions]
    else:
        items = str(sessions or "").split(",")
    if single:
        items.append(str(single))
    ids = {s.strip() for s in items if s and s.strip()}
    if "*" in ids:
        return True, frozenset()
    return False, frozenset(ids)


@dataclass
class ExportSettings:
    """PNG export (vision mixer still feed) settings."""

    enabled: bool = False
    directory: Path = Path("exports/atem-live")
    width: int = 1920
    height: int = 1080
    default_alpha: str = "straight"
    pin_all: bool = False
    pinned: FrozenSet[str] = frozenset()
    debounce_ms: int = 35
    render_url: str = DEFAULT_RENDER_URL
    apply_function: str = "handleMessage"
    max_pages: int = 16
    max_concurrency: int = 4
    render_timeout: float = 15.0
    relaunch_cooldown: float = 30.0
    public_url: str = ""

    @property
    def debounce_secs(self) -> float:
        return self.debounce_ms / 1000.0


@dataclass
class WebhookSettings:
    """Outbound notification fired after each successful publish."""

    url: str = ""
    timeout: float = 3.0
    token: str = ""
    secret: str = ""

    @property
    def enabled(self) -> bool:
        return bool(self.url)


@dataclass
class Settings:
    """Runtime settings loaded from env and an optional YAML file."""

    host: str = "0.0.0.0"
    port: int = 3333
    static_dir: Optional[Path] = None
    log_level: str = "INFO"
    export: ExportSettings = field(default_factory=ExportSettings)
    webhook: WebhookSettings = field(default_factory=WebhookSettings)

    @staticmethod
    def load(env: Optional[Mapping[str, str]] = None, *, load_env_files: bool = True) -> "Settings":
        """Load settings from `.env` files, YAML and environment.

        Order of env loading:
        1) repo root `.env`
        2) `backend/.env`
        Existing env values take precedence over later files.
        """
        if env is None:
            if load_env_files:
                load_dotenv(Path(".env"))
                load_dotenv(Path("backend/.env"))
            env = os.environ

        data = _load_yaml(env.get("OVERLAY_CONFIG_PATH", "").strip())
        return Settings.from_sources(env, data)

    @staticmethod
    def from_sources(env: Mapping[str, str], data: Optional[Dict[str, Any]] = None) -> "Settings":
        """Build settings from an env mapping layered over parsed YAML data."""
        data = data or {}
        server = data.get("server", {}) or {}
        exp = data.get("export", {}) or {}
        hook = data.get("webhook", {}) or {}

        def pick(env_key: str, section: Dict[str, Any], yaml_key: str) -> Any:
            value = env.get(env_key)
            if value is not None and value != "":
                return value
            return section.get(yaml_key)

        port = _as_int(pick("PORT", server, "port"), 3333, name="PORT")
        static_dir = pick("STATIC_DIR", server, "static_dir")

        alpha = str(pick("ATEM_EXPORT_ALPHA", exp, "alpha") or "straight").strip().lower()
        if alpha not in ALPHA_MODES:
            logger.warning(f"Invalid ATEM_EXPORT_ALPHA {alpha!r}, using 'straight'")
            alpha = "straight"

        pin_all, pinned = parse_pinned(
            pick("ATEM_EXPORT_SESSIONS", exp, "sessions"),
            pick("ATEM_EXPORT_SESSION", exp, "session"),
        )

        export = ExportSettings(
            enabled=_as_bool(pick("ATEM_EXPORT_ENABLED", exp, "enabled"), False),
            directory=Path(str(pick("ATEM_EXPORT_DIR", exp, "dir") or "exports/atem-live")).expanduser(),
            width=_clamp_dimension(_as_int(pick("ATEM_EXPORT_WIDTH", exp, "width"), 1920, name="ATEM_EXPORT_WIDTH")),
            height=_clamp_dimension(_as_int(pick("ATEM_EXPORT_HEIGHT", exp, "height"), 1080, name="ATEM_EXPORT_HEIGHT")),
            default_alpha=alpha,
            pin_all=pin_all,
            pinned=pinned,
            debounce_ms=max(0, _as_int(pick("ATEM_EXPORT_DEBOUNCE_MS", exp, "debounce_ms"), 35, name="ATEM_EXPORT_DEBOUNCE_MS")),
            render_url=str(pick("ATEM_EXPORT_RENDER_URL", exp, "render_url") or DEFAULT_RENDER_URL),
            apply_function=str(pick("ATEM_EXPORT_APPLY_FN", exp, "apply_function") or "handleMessage"),
            max_pages=max(1, _as_int(pick("ATEM_EXPORT_MAX_PAGES", exp, "max_pages"), 16, name="ATEM_EXPORT_MAX_PAGES")),
            max_concurrency=max(1, _as_int(pick("ATEM_EXPORT_MAX_CONCURRENCY", exp, "max_concurrency"), 4, name="ATEM_EXPORT_MAX_CONCURRENCY")),
            render_timeout=_as_float(pick("ATEM_EXPORT_RENDER_TIMEOUT", exp, "render_timeout"), 15.0, name="ATEM_EXPORT_RENDER_TIMEOUT"),
            relaunch_cooldown=_as_float(pick("ATEM_EXPORT_RELAUNCH_COOLDOWN", exp, "relaunch_cooldown"), 30.0, name="ATEM_EXPORT_RELAUNCH_COOLDOWN"),
            public_url=str(pick("ATEM_EXPORT_PUBLIC_URL", exp, "public_url") or "").rstrip("/"),
        )
        export.render_url = export.render_url.replace("{port}", str(port))

        webhook = WebhookSettings(
            url=str(pick("ATEM_EXPORT_WEBHOOK_URL", hook, "url") or "").strip(),
            timeout=_as_float(pick("ATEM_EXPORT_WEBHOOK_TIMEOUT", hook, "timeout"), 3.0, name="ATEM_EXPORT_WEBHOOK_TIMEOUT"),
            token=str(pick("ATEM_EXPORT_WEBHOOK_TOKEN", hook, "token") or ""),
            secret=str(pick("ATEM_EXPORT_WEBHOOK_SECRET", hook, "secret") or ""),
        )

        settings = Settings(
            host=str(pick("HOST", server, "host") or "0.0.0.0"),
            port=port,
            static_dir=Path(str(static_dir)).expanduser() if static_dir else None,
            log_level=str(env.get("LOG_LEVEL", "INFO")).upper(),
            export=export,
            webhook=webhook,
        )

        logger.info(
            f"Loaded settings (port={settings.port}, export={export.enabled}, "
            f"size={export.width}x{export.height}, alpha={export.default_alpha}, "
            f"pinned={'*' if export.pin_all else sorted(export.pinned)}, webhook={webhook.enabled})"
        )
        return settings


def _load_yaml(path_value: str) -> Dict[str, Any]:
    if not path_value:
        return {}
    path = Path(path_value).expanduser()
    if not path.is_absolute():
        path = Path.cwd() / path
    try:
        with path.open("r", encoding="utf-8") as fp:
            data = yaml.safe_load(fp) or {}
    except FileNotFoundError:
        logger.error(f"Config YAML not found at: {path}")
        raise
    except Exception as exc:
        logger.exception(f"Failed to load config YAML: {exc}")
        raise
    if not isinstance(data, dict):
        raise ValueError("Config YAML must contain a mapping at the top level")
    return data
