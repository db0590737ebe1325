"""
Engine Configuration (``equipment_kernel.config``).

Responsibility
--------------
Loads ``EngineSettings`` from an optional YAML file and applies
environment-variable overrides.  The process bootstrap calls
``load_settings()`` once and hands the result to ``init_engine_from_url``
and ``TransactionCoordinator``; engine components never read the
environment themselves.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown keys or unparseable values  -> ``ValueError``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Mapping

import yaml

DEFAULT_DATABASE_URL = "sqlite:///equipment_kernel.db"

_ENV_OVERRIDES: dict[str, str] = {
    "EQUIPMENT_DATABASE_URL": "database_url",
    "EQUIPMENT_DB_ECHO": "echo",
    "EQUIPMENT_DB_POOL_SIZE": "pool_size",
    "EQUIPMENT_LOCK_TIMEOUT_SECONDS": "lock_timeout_seconds",
    "EQUIPMENT_LOG_LEVEL": "log_level",
}


@dataclass(frozen=True)
class EngineSettings:
    """Runtime settings for the engine and its database connection."""

    database_url: str = DEFAULT_DATABASE_URL
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30
    # Upper bound on any row-lock wait; past it the operation fails with
    # ConcurrentModificationError instead of blocking.
    lock_timeout_seconds: float = 10.0
    log_level: str = "INFO"
    serial_prefix_separator: str = "-"

    def __post_init__(self) -> None:
        if not self.database_url:
            raise ValueError("database_url must not be empty")
        if self.lock_timeout_seconds <= 0:
            raise ValueError(
                f"lock_timeout_seconds must be positive, got {self.lock_timeout_seconds}"
            )
        if self.pool_size < 1:
            raise ValueError(f"pool_size must be >= 1, got {self.pool_size}")


def _coerce(name: str, raw: Any) -> Any:
    """Coerce a YAML/env value to the declared field type."""
    if name == "echo":
        if isinstance(raw, bool):
            return raw
        return str(raw).strip().lower() in ("1", "true", "yes", "on")
    if name in ("pool_size", "max_overflow", "pool_timeout"):
        try:
            return int(raw)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"{name} must be an integer, got {raw!r}") from exc
    if name == "lock_timeout_seconds":
        try:
            return float(raw)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"{name} must be a number, got {raw!r}") from exc
    return str(raw)


def settings_from_mapping(data: Mapping[str, Any]) -> EngineSettings:
    """
    Build settings from a plain mapping (parsed YAML).

    Raises:
        ValueError: on unknown keys or uncoercible values.
    """
    known = {f.name for f in fields(EngineSettings)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown engine setting(s): {', '.join(unknown)}")
    return EngineSettings(**{k: _coerce(k, v) for k, v in data.items()})


def load_settings(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> EngineSettings:
    """
    Load engine settings.

    Resolution order: dataclass defaults, then the YAML file (if given),
    then ``EQUIPMENT_*`` environment variables.

    Args:
        path: Optional YAML file.  The top-level mapping may hold the
            settings directly or under an ``engine:`` key.
        environ: Environment mapping (defaults to ``os.environ``).
    """
    settings = EngineSettings()

    if path is not None:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Settings file {path} must contain a mapping")
        settings = settings_from_mapping(data.get("engine", data))

    env = os.environ if environ is None else environ
    overrides = {
        field_name: _coerce(field_name, env[var])
        for var, field_name in _ENV_OVERRIDES.items()
        if env.get(var)
    }
    if overrides:
        settings = replace(settings, **overrides)
    return settings
