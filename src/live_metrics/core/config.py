"""Configuration loading and validation for the live metrics engine."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .models import METRIC_SCHEMA

MIN_INTERVAL_SECONDS = 1
MAX_INTERVAL_SECONDS = 30

DEFAULT_SURFACES: dict[str, list[str]] = {
    "cpu": ["cpuPercent"],
    "memory": ["memoryPercent"],
    "disk": ["diskPercent"],
    "network": ["networkInRate", "networkOutRate"],
    "visitors": ["visitorCount"],
    "requests": ["requestRate"],
    "system": ["temperatureC", "processCount", "activeConnections"],
}


class PollConfig(BaseModel):
    """Refresh settings for one monitoring surface."""

    model_config = ConfigDict(frozen=True)

    interval_seconds: int = Field(
        default=3, ge=MIN_INTERVAL_SECONDS, le=MAX_INTERVAL_SECONDS
    )
    enabled: bool = True


class SourceConfig(BaseModel):
    """Where and how to reach the metrics provider."""

    url: str = "http://127.0.0.1:3001/api/system-monitoring/stats"
    token: str | None = None
    timeout_seconds: float = Field(default=2.0, gt=0)
    seed: int | None = None

    @field_validator("url")
    @classmethod
    def _validate_url(cls, value: str) -> str:
        value = value.strip()
        if not value.startswith(("http://", "https://")):
            raise ValueError("source url must start with http:// or https://")
        return value


class PollingConfig(BaseModel):
    """Default refresh behaviour shared by every surface."""

    refresh_interval_seconds: int = Field(
        default=3, ge=MIN_INTERVAL_SECONDS, le=MAX_INTERVAL_SECONDS
    )
    auto_refresh_enabled: bool = True
    stale_after_failures: int = Field(default=3, ge=1)

    def poll_config(self) -> PollConfig:
        return PollConfig(
            interval_seconds=self.refresh_interval_seconds,
            enabled=self.auto_refresh_enabled,
        )


class BufferConfig(BaseModel):
    """Buffer limits for rolling series."""

    capacity: int = Field(default=15, ge=2, le=500)


class LoggingConfig(BaseModel):
    """Log output options."""

    level: str = "INFO"
    file: str | None = None

    @field_validator("level")
    @classmethod
    def _validate_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level: {value}")
        return level


class Config(BaseModel):
    """Top-level engine configuration."""

    source: SourceConfig = Field(default_factory=SourceConfig)
    polling: PollingConfig = Field(default_factory=PollingConfig)
    buffers: BufferConfig = Field(default_factory=BufferConfig)
    surfaces: dict[str, list[str]] = Field(
        default_factory=lambda: {k: list(v) for k, v in DEFAULT_SURFACES.items()}
    )
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("surfaces")
    @classmethod
    def _validate_surfaces(cls, value: dict[str, list[str]]) -> dict[str, list[str]]:
        if not value:
            raise ValueError("at least one surface must be configured")
        seen: set[str] = set()
        for surface, metrics in value.items():
            if not metrics:
                raise ValueError(f"surface {surface!r} has no metrics")
            for name in metrics:
                if name not in METRIC_SCHEMA:
                    raise ValueError(f"surface {surface!r}: unknown metric {name!r}")
                if name in seen:
                    raise ValueError(f"metric {name!r} is owned by more than one surface")
                seen.add(name)
        return value


class ConfigError(RuntimeError):
    """Raised when configuration loading fails."""


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML file into a dictionary."""

    try:
        with path.open("r", encoding="utf8") as handle:
            data = yaml.safe_load(handle) or {}
    except FileNotFoundError as exc:
        raise ConfigError(f"configuration file not found: {path}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"failed to parse YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError("configuration root must be a mapping")
    return data


def load_config(path: str | Path) -> Config:
    """Load and validate the configuration at *path*."""

    config_path = Path(path)
    data = _load_yaml(config_path)
    try:
        config = Config.model_validate(data)
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc
    return config


__all__ = [
    "BufferConfig",
    "Config",
    "ConfigError",
    "DEFAULT_SURFACES",
    "LoggingConfig",
    "PollConfig",
    "PollingConfig",
    "SourceConfig",
    "load_config",
]
