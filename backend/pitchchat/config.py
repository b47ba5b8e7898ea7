"""Pitchchat messaging configuration.

Loads settings from two YAML files:
  * pitchchat.settings.yaml: non-secret configuration
  * pitchchat.secrets.yaml: secrets (never committed)

Both files are optional; missing sections fall back to the defaults below.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("pitchchat.settings.yaml")
SECRETS_FILE  = Path("pitchchat.secrets.yaml")

_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Secrets models
# ---------------------------------------------------------------------------


class ApiSecrets(BaseModel):
    token: Optional[str] = None


class Secrets(BaseModel):
    api: ApiSecrets = Field(default_factory=ApiSecrets)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ApiSettings(BaseModel):
    base_url:        str   = "http://localhost:5000/api/v1"
    timeout_seconds: float = 15.0

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


class LiveChannelSettings(BaseModel):
    """Push channel endpoint and reconnect backoff."""
    url:                     str   = "ws://localhost:5000/ws"
    initial_backoff_seconds: float = 0.5
    max_backoff_seconds:     float = 30.0
    backoff_factor:          float = 2.0
    open_timeout_seconds:    float = 10.0

    @model_validator(mode="after")
    def validate_backoff(self) -> "LiveChannelSettings":
        """Reject backoff windows that could never grow or never start.

        Raises:
            ValueError: If the initial delay is not positive, exceeds the cap,
                or the growth factor is below 1.
        """
        if self.initial_backoff_seconds <= 0:
            raise ValueError("initial_backoff_seconds must be positive")
        if self.initial_backoff_seconds > self.max_backoff_seconds:
            raise ValueError("initial_backoff_seconds must not exceed max_backoff_seconds")
        if self.backoff_factor < 1:
            raise ValueError("backoff_factor must be >= 1")
        return self


class ComposerSettings(BaseModel):
    # Bounded wait for the live-channel echo of our own send
    echo_timeout_seconds: float = Field(default=3.0, gt=0)


class FeedSettings(BaseModel):
    default_page_size: int = Field(default=20, ge=1)
    max_page_size:     int = Field(default=100, ge=1)


class CacheSettings(BaseModel):
    rooms_stale_seconds:    float = 10.0
    messages_stale_seconds: float = 5.0
    max_cached_feeds:       int   = Field(default=20, ge=1)


class LoggingSettings(BaseModel):
    level: str = "INFO"

    @field_validator("level")
    @classmethod
    def normalise_level(cls, value: str) -> str:
        level = value.upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"Unknown log level: {value}")
        return level


class AppSettings(BaseModel):
    api:          ApiSettings         = Field(default_factory=ApiSettings)
    live_channel: LiveChannelSettings = Field(default_factory=LiveChannelSettings)
    composer:     ComposerSettings    = Field(default_factory=ComposerSettings)
    feed:         FeedSettings        = Field(default_factory=FeedSettings)
    cache:        CacheSettings       = Field(default_factory=CacheSettings)
    logging:      LoggingSettings     = Field(default_factory=LoggingSettings)
    secrets:      Secrets             = Field(default_factory=Secrets)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_settings(
    settings_path: Optional[Path] = None,
    secrets_path: Optional[Path] = None,
) -> AppSettings:
    """Load and merge settings + secrets into a single *AppSettings* object."""
    settings_data = _load_yaml(Path(settings_path) if settings_path else SETTINGS_FILE)
    secrets_data  = _load_yaml(Path(secrets_path) if secrets_path else SECRETS_FILE)

    # Merge: secrets live under the "secrets" key in AppSettings
    settings_data["secrets"] = secrets_data

    app_settings = AppSettings(**settings_data)
    logger.info(
        "Settings loaded (api=%s, live_channel=%s, echo_timeout=%ss)",
        app_settings.api.base_url,
        app_settings.live_channel.url,
        app_settings.composer.echo_timeout_seconds,
    )
    return app_settings


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_settings: Optional[AppSettings] = None


def get_settings() -> AppSettings:
    """Return the global settings, loading them from disk on first use."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def set_settings(settings: Optional[AppSettings]) -> None:
    """Set (or clear, with None) the global settings instance."""
    global _settings
    _settings = settings
