from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class FileRotationSettings(BaseModel):
    """
    Date-based rotation settings (daily).

    This maps cleanly to Python's standard library TimedRotatingFileHandler behavior.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    backup_count: int = 7


class FileLoggingSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    path: str = ""
    rotation: FileRotationSettings = FileRotationSettings()


class LoggingSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    level: str = "INFO"
    file: FileLoggingSettings = FileLoggingSettings()


class ServerSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    base_url: str
    ping_path: str = "/ping"
    ping_interval_seconds: float = Field(default=3.0, gt=0)
    ping_timeout_seconds: float = Field(default=2.0, gt=0)

    # None leaves requests without a deadline; a hung request keeps its caller waiting.
    request_timeout_seconds: Optional[float] = None


class StorageSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    data_dir: str = "data/offline"
    small_tier_file: str = "state.json"
    large_tier_dir: str = "cache"
    max_file_entries: int = Field(default=60, ge=1)


class ConnectivitySettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    warning_threshold_seconds: float = Field(default=300.0, ge=0)
    poll_interval_seconds: float = Field(default=2.5, gt=0)


class AppConfig(BaseModel):
    """Effective runtime configuration after applying all precedence rules."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    logging: LoggingSettings = LoggingSettings()
    server: ServerSettings
    storage: StorageSettings = StorageSettings()
    connectivity: ConnectivitySettings = ConnectivitySettings()


@dataclass(frozen=True, slots=True)
class ConfigLoadRequest:
    """
    Optional inputs for a configuration loader.

    Implementations may use these to control where configuration is read from.
    """

    yaml_path: str = "data/config/config.yaml"
    env_prefix: str = "COUNT_REVIEW__"
    dotenv_path: Optional[str] = "data/.env"
