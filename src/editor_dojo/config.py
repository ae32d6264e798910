from __future__ import annotations

"""Settings resolution: defaults, optional YAML file, then environment overrides."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigurationError
from .paths import dojo_home


CONFIG_FILE_NAME = "config.yaml"
DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DEFAULT_LOCK_TIMEOUT_SECONDS = 10.0
DEFAULT_DISPLAY_MAX_LENGTH = 80
DEFAULT_API_PORT = 8000


def _env_float(name: str, fallback: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return fallback
    try:
        value = float(raw)
    except ValueError:
        return fallback
    if value <= 0:
        return fallback
    return value


def _log_level(value: Any) -> str:
    number = logging.getLevelName(str(value).strip().upper())
    if not isinstance(number, int):
        raise ConfigurationError(f"Unknown log level: {value}", level=str(value))
    # Aliases such as WARN and FATAL map back to their canonical names.
    return logging.getLevelName(number)


def _coerce_positive_int(value: Any, fallback: int) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return fallback
    if parsed <= 0:
        return fallback
    return parsed


@dataclass
class Settings:
    """Resolved runtime settings for the ledger, API, and CLI."""

    home: Path
    progress_path: Path
    recordings_dir: Path
    log_level: str = "INFO"
    log_format: str = DEFAULT_LOG_FORMAT
    log_file: Path | None = None
    lock_timeout_seconds: float = DEFAULT_LOCK_TIMEOUT_SECONDS
    display_max_length: int = DEFAULT_DISPLAY_MAX_LENGTH
    api_host: str = "127.0.0.1"
    api_port: int = DEFAULT_API_PORT
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def for_home(cls, home: Path) -> "Settings":
        return cls(
            home=home,
            progress_path=home / "progress.json",
            recordings_dir=home / "recordings",
        )


def _load_config_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        payload = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Config file is not valid YAML: {path}", path=str(path)) from exc
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ConfigurationError(f"Config file must contain a YAML mapping: {path}", path=str(path))
    return payload


def _resolve_path(home: Path, value: Any) -> Path:
    candidate = Path(str(value)).expanduser()
    if not candidate.is_absolute():
        candidate = home / candidate
    return candidate


def load_settings(home: Path | None = None) -> Settings:
    """Build settings for `home` (or the configured data home)."""

    base = home or dojo_home()
    settings = Settings.for_home(base)
    raw = _load_config_file(base / CONFIG_FILE_NAME)

    if "progress_path" in raw:
        settings.progress_path = _resolve_path(base, raw.pop("progress_path"))
    if "recordings_dir" in raw:
        settings.recordings_dir = _resolve_path(base, raw.pop("recordings_dir"))
    logging_section = raw.pop("logging", None) or {}
    if not isinstance(logging_section, dict):
        raise ConfigurationError("Config key 'logging' must be a mapping.")
    if logging_section.get("level"):
        settings.log_level = _log_level(logging_section["level"])
    if logging_section.get("format"):
        settings.log_format = str(logging_section["format"])
    if logging_section.get("file"):
        settings.log_file = _resolve_path(base, logging_section["file"])
    if "lock_timeout_seconds" in raw:
        try:
            settings.lock_timeout_seconds = float(raw.pop("lock_timeout_seconds"))
        except (TypeError, ValueError) as exc:
            raise ConfigurationError("lock_timeout_seconds must be a number.") from exc
        if settings.lock_timeout_seconds <= 0:
            raise ConfigurationError(
                "lock_timeout_seconds must be positive.",
                lock_timeout_seconds=settings.lock_timeout_seconds,
            )
    if "display_max_length" in raw:
        settings.display_max_length = _coerce_positive_int(raw.pop("display_max_length"), DEFAULT_DISPLAY_MAX_LENGTH)
    api_section = raw.pop("api", None) or {}
    if isinstance(api_section, dict):
        settings.api_host = str(api_section.get("host", settings.api_host))
        settings.api_port = _coerce_positive_int(api_section.get("port", settings.api_port), DEFAULT_API_PORT)
    settings.extra = raw

    env_level = os.environ.get("EDITOR_DOJO_LOG_LEVEL", "").strip()
    if env_level:
        settings.log_level = _log_level(env_level)
    env_log_file = os.environ.get("EDITOR_DOJO_LOG_FILE", "").strip()
    if env_log_file:
        settings.log_file = Path(env_log_file).expanduser()
    settings.lock_timeout_seconds = _env_float("EDITOR_DOJO_LOCK_TIMEOUT", settings.lock_timeout_seconds)
    return settings
