"""MindMate application configuration.

Loads settings from two YAML files:
  * mindmate.settings.yaml  — non-secret configuration
  * mindmate.secrets.yaml   — secrets (never committed)

Either path can be overridden with the ``MINDMATE_SETTINGS_FILE`` and
``MINDMATE_SECRETS_FILE`` environment variables.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("mindmate.settings.yaml")
SECRETS_FILE  = Path("mindmate.secrets.yaml")


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Secrets models
# ---------------------------------------------------------------------------


class RedisSecrets(BaseModel):
    url: Optional[str] = None


class Secrets(BaseModel):
    redis: RedisSecrets = Field(default_factory=RedisSecrets)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str       = "0.0.0.0"
    port:            int       = 3000
    reload:          bool      = False
    allowed_origins: List[str] = Field(default_factory=lambda: ["http://localhost:5173"])


class LoggingSettings(BaseModel):
    level: str = "info"


class ChatSettings(BaseModel):
    """Chat pipeline tuning.

    ``cache_capacity`` bounds each room's cached window; ``latest_limit`` is
    how many records a cold latest-page read pulls from the message log.
    """
    default_room:      str = "global"
    cache_capacity:    int = 100
    latest_limit:      int = 100
    default_page_size: int = 50
    max_page_size:     int = 100

    @field_validator("cache_capacity", "latest_limit", "default_page_size", "max_page_size")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value


class CacheSettings(BaseModel):
    """Key-value backend for the room cache, offline queues and last-seen keys."""
    backend:         Literal["memory", "redis"] = "memory"
    room_prefix:     str = "chat"
    offline_prefix:  str = "offline"
    last_seen_prefix: str = "lastSeen"


class DatabaseSettings(BaseModel):
    path: str = "mindmate.duckdb"


class AppSettings(BaseModel):
    server:   ServerSettings   = Field(default_factory=ServerSettings)
    logging:  LoggingSettings  = Field(default_factory=LoggingSettings)
    chat:     ChatSettings     = Field(default_factory=ChatSettings)
    cache:    CacheSettings    = Field(default_factory=CacheSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    secrets:  Secrets          = Field(default_factory=Secrets)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_settings(
    settings_file: Optional[Path] = None,
    secrets_file: Optional[Path] = None,
) -> AppSettings:
    """Load and merge settings + secrets into a single *AppSettings* object."""
    settings_path = settings_file or Path(os.environ.get("MINDMATE_SETTINGS_FILE", SETTINGS_FILE))
    secrets_path  = secrets_file or Path(os.environ.get("MINDMATE_SECRETS_FILE", SECRETS_FILE))

    settings_data = _load_yaml(settings_path)
    secrets_data  = _load_yaml(secrets_path)

    # Merge: secrets live under the "secrets" key in AppSettings
    settings_data["secrets"] = secrets_data

    app_settings = AppSettings(**settings_data)
    logger.info(
        "Settings loaded (server=%s:%s, cache.backend=%s, database=%s)",
        app_settings.server.host,
        app_settings.server.port,
        app_settings.cache.backend,
        app_settings.database.path,
    )
    return app_settings


_config: Optional[AppSettings] = None


def get_config() -> AppSettings:
    """Return the process-wide settings, loading them on first use."""
    global _config
    if _config is None:
        _config = load_settings()
    return _config


def set_config(config: Optional[AppSettings]) -> None:
    """Replace (or clear, with ``None``) the process-wide settings."""
    global _config
    _config = config


def reset_config() -> None:
    """Forget cached settings so the next ``get_config()`` reloads them."""
    set_config(None)
