"""Configuration management for the user service."""
from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

from .database import DEFAULT_POOL_SIZE, DEFAULT_POOL_TIMEOUT, resolve_database_path

ENV_PREFIX = "USER_SERVICE_"
CONFIG_PATH_ENV = ENV_PREFIX + "CONFIG"

_ENV_KEYS = {
    "database_path": ENV_PREFIX + "DB_PATH",
    "pool_size": ENV_PREFIX + "POOL_SIZE",
    "pool_timeout": ENV_PREFIX + "POOL_TIMEOUT",
    "host": ENV_PREFIX + "HOST",
    "port": ENV_PREFIX + "PORT",
    "cors_origins": ENV_PREFIX + "CORS_ORIGINS",
    "log_level": ENV_PREFIX + "LOG_LEVEL",
}


def _as_int(name: str, value: object, *, minimum: int) -> int:
    try:
        number = int(str(value).strip())
    except ValueError as exc:
        raise ValueError(f"Invalid integer value {value!r} for setting '{name}'") from exc
    if number < minimum:
        raise ValueError(f"Setting '{name}' must be at least {minimum}")
    return number


def _as_float(name: str, value: object) -> float:
    try:
        number = float(str(value).strip())
    except ValueError as exc:
        raise ValueError(f"Invalid number {value!r} for setting '{name}'") from exc
    if number <= 0:
        raise ValueError(f"Setting '{name}' must be positive")
    return number


def _as_origins(value: object) -> Tuple[str, ...]:
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple)):
        items = [str(item) for item in value]
    else:
        raise ValueError("Setting 'cors_origins' must be a list or a comma-separated string")
    return tuple(item.strip() for item in items if item.strip())


def _resolve_path(raw: object, base_path: Optional[Path]) -> Path:
    candidate = Path(str(raw)).expanduser()
    if not candidate.is_absolute() and base_path is not None:
        candidate = base_path / candidate
    return candidate.resolve(strict=False)


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the HTTP service and its connection pool."""

    database_path: Path = field(default_factory=lambda: resolve_database_path(None))
    pool_size: int = DEFAULT_POOL_SIZE
    pool_timeout: float = DEFAULT_POOL_TIMEOUT
    host: str = "0.0.0.0"
    port: int = 3000
    cors_origins: Tuple[str, ...] = ("*",)
    log_level: str = "INFO"

    @staticmethod
    def from_dict(data: Mapping[str, Any], base_path: Path | None = None) -> "Settings":
        """Create :class:`Settings` from raw mapping data.

        Unknown keys are rejected so that typos do not silently fall back to
        defaults. Relative database paths resolve against ``base_path``.
        """

        unknown = set(data) - set(_ENV_KEYS)
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

        return Settings().merged(data, base_path=base_path)

    def merged(self, data: Mapping[str, Any], base_path: Path | None = None) -> "Settings":
        updates: Dict[str, Any] = {}
        if data.get("database_path") is not None:
            updates["database_path"] = _resolve_path(data["database_path"], base_path)
        if data.get("pool_size") is not None:
            updates["pool_size"] = _as_int("pool_size", data["pool_size"], minimum=1)
        if data.get("pool_timeout") is not None:
            updates["pool_timeout"] = _as_float("pool_timeout", data["pool_timeout"])
        if data.get("host") is not None:
            updates["host"] = str(data["host"]).strip() or self.host
        if data.get("port") is not None:
            updates["port"] = _as_int("port", data["port"], minimum=1)
        if data.get("cors_origins") is not None:
            updates["cors_origins"] = _as_origins(data["cors_origins"])
        if data.get("log_level") is not None:
            updates["log_level"] = str(data["log_level"]).strip().upper() or self.log_level
        return replace(self, **updates)


def resolve_config_path(env_value: Optional[str]) -> Optional[Path]:
    """Resolve the path to the optional YAML configuration file."""

    if not env_value:
        return None
    return Path(env_value).expanduser().resolve(strict=False)


def load_settings(
    config_path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Load settings from an optional YAML file, then apply environment overrides."""

    env = os.environ if environ is None else environ
    if config_path is None:
        config_path = resolve_config_path(env.get(CONFIG_PATH_ENV))

    settings = Settings()
    if config_path is not None:
        with config_path.open("r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle) or {}
        if not isinstance(raw, dict):
            raise ValueError("Configuration file must contain a mapping at the top level")
        settings = Settings.from_dict(raw, base_path=config_path.parent)

    overrides = {
        key: env[variable]
        for key, variable in _ENV_KEYS.items()
        if env.get(variable, "").strip()
    }
    # environment paths are relative to the working directory
    return settings.merged(overrides, base_path=Path.cwd())


__all__ = ["CONFIG_PATH_ENV", "Settings", "load_settings", "resolve_config_path"]
