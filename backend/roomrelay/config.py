"""roomrelay application configuration.

Loads settings from a single YAML file:
  * roomrelay.settings.yaml: non-secret configuration

The file location can be overridden with the ROOMRELAY_SETTINGS environment
variable, and the PORT environment variable overrides ``server.port``.
A missing file is not an error; every setting has a default.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from roomrelay.rooms.eviction import DEFAULT_GRACE_PERIOD_SECONDS
from roomrelay.rooms.models import DEFAULT_SNAPSHOT_LIMIT
from roomrelay.rooms.transport import DEFAULT_OUTBOX_LIMIT

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("roomrelay.settings.yaml")
SETTINGS_ENV_VAR = "ROOMRELAY_SETTINGS"
PORT_ENV_VAR = "PORT"


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str       = "0.0.0.0"
    port:            int       = 3000
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])
    static_dir:      str       = "frontend/dist"
    outbox_limit:    int       = DEFAULT_OUTBOX_LIMIT

    @field_validator("outbox_limit")
    @classmethod
    def _positive_outbox(cls, value: int) -> int:
        if value < 1:
            raise ValueError("outbox_limit must be >= 1")
        return value


class RoomSettings(BaseModel):
    grace_period_seconds:   float = DEFAULT_GRACE_PERIOD_SECONDS
    snapshot_message_limit: int   = DEFAULT_SNAPSHOT_LIMIT

    @field_validator("grace_period_seconds")
    @classmethod
    def _non_negative_grace(cls, value: float) -> float:
        if value < 0:
            raise ValueError("grace_period_seconds must be >= 0")
        return value

    @field_validator("snapshot_message_limit")
    @classmethod
    def _positive_limit(cls, value: int) -> int:
        if value < 1:
            raise ValueError("snapshot_message_limit must be >= 1")
        return value


class LoggingSettings(BaseModel):
    level: str = "info"


class AppConfig(BaseModel):
    server:  ServerSettings  = Field(default_factory=ServerSettings)
    rooms:   RoomSettings    = Field(default_factory=RoomSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_config(settings_path: Optional[Path] = None) -> AppConfig:
    """Load settings from YAML and apply environment overrides."""
    if settings_path is None:
        settings_path = Path(os.environ.get(SETTINGS_ENV_VAR, SETTINGS_FILE))
    settings_path = Path(settings_path)

    config = AppConfig(**_load_yaml(settings_path))

    port = os.environ.get(PORT_ENV_VAR)
    if port:
        config.server.port = int(port)

    # Relative static dir is resolved from the settings file location
    static_dir = Path(config.server.static_dir)
    if not static_dir.is_absolute():
        config.server.static_dir = str(settings_path.resolve().parent / static_dir)

    logger.info(
        "Settings loaded (server=%s:%s, grace_period=%ss, snapshot_limit=%s)",
        config.server.host,
        config.server.port,
        config.rooms.grace_period_seconds,
        config.rooms.snapshot_message_limit,
    )
    return config


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Return the process-wide configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    """Forget the cached configuration (used by tests)."""
    global _config
    _config = None
