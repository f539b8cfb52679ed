"""Configuration loaded from environment variables and YAML.

All settings have sensible defaults. Override via BRIDGE_* env vars,
or a ``bridge:`` mapping in a YAML file.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

TELEGRAM_MESSAGE_LIMIT = 4096
DEFAULT_MAX_UPLOAD_BYTES = 50 * 1024 * 1024


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r", name, raw)
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r", name, raw)
        return default


def _parse_user_ids(raw: Any) -> list[int]:
    if raw is None:
        return []
    if isinstance(raw, str):
        items: list[Any] = [p for p in raw.replace(";", ",").split(",")]
    elif isinstance(raw, (list, tuple)):
        items = list(raw)
    else:
        items = [raw]
    ids: list[int] = []
    for item in items:
        text = str(item).strip()
        if not text:
            continue
        try:
            ids.append(int(text))
        except ValueError:
            logger.warning("Ignoring invalid user id %r", item)
    return ids


@dataclass
class BridgeConfig:
    """Streaming bridge configuration."""

    # Assistant binary. When empty it is resolved from PATH once per process.
    binary: str = ""
    # Skip the assistant's permission prompts entirely.
    bypass_permissions: bool = False
    # Tools offered to the assistant; None means the built-in list.
    allowed_tools: list[str] | None = None

    # Renderer cadence and outbound pacing (seconds)
    poll_interval_seconds: float = 3.0
    rate_limit_gap_seconds: float = 3.0
    message_limit: int = TELEGRAM_MESSAGE_LIMIT

    # Persistence
    sessions_dir: str = str(Path.home() / ".chatbridge" / "sessions")
    # Largest document or photo accepted from the chat
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES

    # Telegram
    telegram_token: str = field(default="", repr=False)
    allowed_user_ids: list[int] = field(default_factory=list)
    poll_timeout_seconds: int = 30

    # Logging
    log_level: str = "INFO"
    debug_stream: bool = False

    @classmethod
    def from_env(cls) -> BridgeConfig:
        """Create config from BRIDGE_* environment variables."""
        tools_raw = os.getenv("BRIDGE_ALLOWED_TOOLS")
        allowed_tools = (
            [t.strip() for t in tools_raw.split(",") if t.strip()]
            if tools_raw
            else None
        )
        config = cls(
            binary=os.getenv("BRIDGE_BINARY", ""),
            bypass_permissions=_env_bool("BRIDGE_BYPASS_PERMISSIONS", False),
            allowed_tools=allowed_tools,
            poll_interval_seconds=_env_float("BRIDGE_POLL_INTERVAL", 3.0),
            rate_limit_gap_seconds=_env_float("BRIDGE_RATE_LIMIT_GAP", 3.0),
            message_limit=_env_int("BRIDGE_MESSAGE_LIMIT", TELEGRAM_MESSAGE_LIMIT),
            sessions_dir=os.getenv(
                "BRIDGE_SESSIONS_DIR",
                str(Path.home() / ".chatbridge" / "sessions"),
            ),
            telegram_token=(
                os.getenv("BRIDGE_TELEGRAM_TOKEN")
                or os.getenv("TELEGRAM_BOT_TOKEN")
                or ""
            ),
            allowed_user_ids=_parse_user_ids(os.getenv("BRIDGE_ALLOWED_USERS")),
            max_upload_bytes=_env_int(
                "BRIDGE_MAX_UPLOAD_BYTES", DEFAULT_MAX_UPLOAD_BYTES
            ),
            poll_timeout_seconds=_env_int("BRIDGE_POLL_TIMEOUT", 30),
            log_level=os.getenv("BRIDGE_LOG_LEVEL", "INFO").upper(),
            debug_stream=_env_bool("BRIDGE_DEBUG", False),
        )
        logger.debug(
            "BridgeConfig.from_env: binary=%s bypass=%s poll=%.1fs gap=%.1fs "
            "sessions_dir=%s allowed_users=%d",
            config.binary or "<auto>",
            config.bypass_permissions,
            config.poll_interval_seconds,
            config.rate_limit_gap_seconds,
            config.sessions_dir,
            len(config.allowed_user_ids),
        )
        return config


def load_yaml_config(
    path: str | Path, base: BridgeConfig | None = None
) -> BridgeConfig:
    """Overlay the ``bridge:`` mapping of a YAML file onto *base*.

    *base* defaults to ``BridgeConfig.from_env()``. Unknown keys are
    logged and ignored.
    """
    path = Path(path)
    config = base if base is not None else BridgeConfig.from_env()
    try:
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.error("load_yaml_config: config file not found at %s", path)
        raise
    except yaml.YAMLError as exc:
        logger.error("load_yaml_config: YAML parse error in %s: %s", path, exc)
        raise

    if not isinstance(raw, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    section = raw.get("bridge", raw)
    if not isinstance(section, dict):
        raise ValueError(f"{path}: 'bridge' must be a mapping")

    known = {f.name for f in fields(BridgeConfig)}
    for key, value in section.items():
        if key not in known:
            logger.warning("load_yaml_config: ignoring unknown key %r", key)
            continue
        if key == "allowed_user_ids":
            value = _parse_user_ids(value)
        elif key == "allowed_tools" and value is not None:
            value = [str(v) for v in value]
        elif key == "sessions_dir":
            value = str(Path(str(value)).expanduser())
        setattr(config, key, value)

    logger.info(
        "Loaded YAML config %s (keys: %s)",
        path.name,
        ", ".join(sorted(section)) if section else "(empty)",
    )
    return config
