"""Configuration for the offline sync client.

Settings are pydantic models persisted as YAML. Environment variables
override the file so a token never has to be written to disk.
"""

import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator


logger = logging.getLogger(__name__)


CONFIG_FILE = "config.yaml"

ENV_API_URL = "TODO_SYNC_API_URL"
ENV_TOKEN = "TODO_SYNC_TOKEN"
ENV_OWNER = "TODO_SYNC_OWNER"
ENV_DATA_DIR = "TODO_SYNC_DATA_DIR"


class GatewaySettings(BaseModel):
    """Where the task server lives and how to talk to it."""

    api_url: str = "http://localhost:5000/api"
    token: Optional[str] = None
    timeout_seconds: float = 10.0
    page_size: int = 100

    @field_validator("timeout_seconds")
    @classmethod
    def validate_timeout(cls, v):
        if v <= 0 or v > 120:
            raise ValueError("Timeout must be between 0 and 120 seconds")
        return v

    @field_validator("page_size")
    @classmethod
    def validate_page_size(cls, v):
        if v < 1 or v > 100:
            raise ValueError("Page size must be between 1 and 100")
        return v


class SyncSettings(BaseModel):
    """Timing and retry policy of the synchronizer."""

    interval_seconds: float = 30.0
    max_attempts: int = 5
    backoff_max_seconds: float = 300.0
    push_on_write: bool = True
    probe_interval_seconds: float = 15.0

    @field_validator("interval_seconds", "probe_interval_seconds")
    @classmethod
    def validate_interval(cls, v):
        if v < 1:
            raise ValueError("Intervals must be at least 1 second")
        return v

    @field_validator("max_attempts")
    @classmethod
    def validate_max_attempts(cls, v):
        if v < 1 or v > 100:
            raise ValueError("Max attempts must be between 1 and 100")
        return v


class StorageSettings(BaseModel):
    """Location and kind of the offline store."""

    backend: str = "sqlite"
    data_dir: Path = Field(default_factory=lambda: Path.home() / ".todo_sync")
    db_name: str = "offline.db"

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v):
        if v not in ("sqlite", "memory"):
            raise ValueError("Storage backend must be 'sqlite' or 'memory'")
        return v

    @field_validator("data_dir", mode="before")
    @classmethod
    def expand_data_dir(cls, v):
        return Path(v).expanduser()

    @property
    def db_path(self) -> Path:
        return self.data_dir / self.db_name


class AppConfig(BaseModel):
    """Complete client configuration."""

    owner_id: str = "local"
    log_level: str = "WARNING"
    gateway: GatewaySettings = Field(default_factory=GatewaySettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        level = str(v).upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return level


def get_config_dir() -> Path:
    """Get the configuration directory, honouring the data dir override."""
    override = os.environ.get(ENV_DATA_DIR)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".todo_sync"


def get_config_path() -> Path:
    return get_config_dir() / CONFIG_FILE


def _apply_env_overrides(config: AppConfig) -> AppConfig:
    if os.environ.get(ENV_API_URL):
        config.gateway.api_url = os.environ[ENV_API_URL]
    if os.environ.get(ENV_TOKEN):
        config.gateway.token = os.environ[ENV_TOKEN]
    if os.environ.get(ENV_OWNER):
        config.owner_id = os.environ[ENV_OWNER]
    if os.environ.get(ENV_DATA_DIR):
        config.storage.data_dir = Path(os.environ[ENV_DATA_DIR]).expanduser()
    return config


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """Load configuration from YAML, falling back to defaults.

    Args:
        config_path: Optional path to the config file

    Returns:
        The configuration with environment overrides applied

    Raises:
        pydantic.ValidationError: If the file holds invalid settings
    """
    path = Path(config_path) if config_path else get_config_path()

    data = {}
    if path.exists():
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
        data.pop("_metadata", None)
        logger.debug(f"Loaded config from {path}")
    else:
        logger.debug(f"No config file at {path}, using defaults")

    return _apply_env_overrides(AppConfig(**data))


def save_config(config: AppConfig, config_path: Optional[Path] = None) -> Path:
    """Write configuration to YAML atomically.

    The bearer token is never written; it comes from the environment.

    Returns:
        Path of the written file
    """
    path = Path(config_path) if config_path else get_config_path()

    data = config.model_dump(mode="json")
    data["gateway"].pop("token", None)
    data["_metadata"] = {
        "version": "1.0",
        "updated_at": datetime.now(timezone.utc).isoformat(),
    }

    path.parent.mkdir(parents=True, exist_ok=True)
    temp_file = path.with_suffix(".tmp")
    with open(temp_file, "w") as f:
        yaml.dump(data, f, default_flow_style=False, indent=2, sort_keys=True)
    temp_file.replace(path)

    logger.debug(f"Saved config to {path}")
    return path
