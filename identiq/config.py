"""
Configuration for identiq.

Configuration is loaded from:
1. Environment variables (highest priority), prefixed IDENTIQ_
2. identiq.yaml file
3. Default values (lowest priority)

Nested values use a double underscore: IDENTIQ_LOGGING__LEVEL=DEBUG.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import DEFAULT_HISTORY_WINDOW, DEFAULT_MAX_SESSIONS, SESSION_LOCK_TIMEOUT
from .exceptions import ConfigurationError


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    json_format: bool = True


class Settings(BaseSettings):
    """Registry settings."""

    model_config = SettingsConfigDict(
        env_prefix="IDENTIQ_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Live sessions kept before least-recently-used eviction
    max_sessions: int = Field(default=DEFAULT_MAX_SESSIONS, ge=1)
    # Turns retained per session for model context
    history_window: int = Field(default=DEFAULT_HISTORY_WINDOW, ge=1)
    # Wait for a busy session before giving up
    session_lock_timeout_seconds: float = Field(default=SESSION_LOCK_TIMEOUT, gt=0)
    # Evict sessions idle longer than this on cleanup_idle(); None disables
    idle_timeout_seconds: Optional[float] = Field(default=None, gt=0)

    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def load_yaml_config(path: Optional[Path] = None) -> dict:
    """Load configuration from YAML file."""
    if path is None:
        env_path = os.environ.get("IDENTIQ_CONFIG")
        candidates = [Path(env_path)] if env_path else []
        candidates += [Path("identiq.yaml"), Path("config/identiq.yaml")]
        for candidate in candidates:
            if candidate.exists():
                path = candidate
                break

    if path and path.exists():
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {path} must contain a mapping")
        return data

    return {}


def load_settings(path: Optional[Path] = None) -> Settings:
    """
    Build settings from YAML (if any) and the environment.

    Raises:
        ConfigurationError: if a value is out of range or mistyped
    """
    yaml_config = load_yaml_config(path)
    try:
        # Init kwargs outrank env vars in pydantic-settings: drop YAML keys
        # the environment sets
        env_names = {name.upper() for name in os.environ}
        overridden = {
            key for key in yaml_config
            if f"IDENTIQ_{key.upper()}" in env_names
            or any(name.startswith(f"IDENTIQ_{key.upper()}__") for name in env_names)
        }
        return Settings(**{k: v for k, v in yaml_config.items() if k not in overridden})
    except ValidationError as e:
        raise ConfigurationError(f"Invalid identiq configuration: {e}") from e


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return load_settings()


def reload_settings() -> Settings:
    """Force reload of settings (clears cache)."""
    get_settings.cache_clear()
    return get_settings()
