"""Configuration management for Humantime."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path
from typing import Annotated, Any

import yaml
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

MIB = 1024 * 1024

DEFAULT_DATA_DIR = Path("~/.local/share/humantime")
DEFAULT_BACKOFF_SCHEDULE = (
    timedelta(seconds=5),
    timedelta(seconds=30),
    timedelta(minutes=2),
    timedelta(minutes=5),
    timedelta(minutes=15),
)


class SettingsLoadError(RuntimeError):
    """Raised when a settings file cannot be read or parsed."""


class HumantimeSettings(BaseSettings):
    """Runtime configuration sourced from environment variables, .env and an optional YAML file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    data_dir: Path = Field(default=DEFAULT_DATA_DIR, validation_alias="HUMANTIME_DATA_DIR")
    in_memory: bool = Field(default=False, validation_alias="HUMANTIME_IN_MEMORY")
    log_level: str = Field(default="INFO", validation_alias="HUMANTIME_LOG_LEVEL")
    min_free_space: int = Field(default=10 * MIB, validation_alias="HUMANTIME_MIN_FREE_SPACE")
    min_free_space_warning: int = Field(
        default=50 * MIB, validation_alias="HUMANTIME_MIN_FREE_SPACE_WARNING"
    )
    store_busy_timeout: float = Field(default=5.0, validation_alias="HUMANTIME_STORE_BUSY_TIMEOUT")
    http_timeout: float = Field(default=30.0, validation_alias="HUMANTIME_HTTP_TIMEOUT")
    retry_check_interval: float = Field(
        default=30.0, validation_alias="HUMANTIME_RETRY_QUEUE_INTERVAL"
    )
    retry_backoff_schedule: Annotated[tuple[timedelta, ...], NoDecode] = Field(
        default=DEFAULT_BACKOFF_SCHEDULE, validation_alias="HUMANTIME_RETRY_BACKOFF"
    )
    retry_max_attempts: int = Field(default=5, validation_alias="HUMANTIME_RETRY_MAX_ATTEMPTS")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "HUMANTIME_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("retry_backoff_schedule", mode="before")
    @classmethod
    def _parse_backoff_schedule(cls, value: Any):
        if value is None or value == "":
            return DEFAULT_BACKOFF_SCHEDULE
        if isinstance(value, str):
            parts = [part.strip() for part in value.split(",") if part.strip()]
            return tuple(timedelta(seconds=float(part)) for part in parts)
        if isinstance(value, (list, tuple)):
            return tuple(
                item if isinstance(item, timedelta) else timedelta(seconds=float(item))
                for item in value
            )
        raise TypeError(
            "HUMANTIME_RETRY_BACKOFF must be a list of seconds or a comma-separated string"
        )

    @field_validator("retry_backoff_schedule")
    @classmethod
    def _validate_backoff_schedule(cls, value: tuple[timedelta, ...]) -> tuple[timedelta, ...]:
        if not value:
            raise ValueError("HUMANTIME_RETRY_BACKOFF must contain at least one delay")
        if any(delay < timedelta(0) for delay in value):
            raise ValueError("HUMANTIME_RETRY_BACKOFF delays must not be negative")
        return value

    @field_validator("retry_max_attempts")
    @classmethod
    def _validate_max_attempts(cls, value: int) -> int:
        if value < 1:
            raise ValueError("HUMANTIME_RETRY_MAX_ATTEMPTS must be >= 1")
        return value

    @field_validator("http_timeout", "retry_check_interval", "store_busy_timeout")
    @classmethod
    def _validate_positive_seconds(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("timeouts and intervals must be positive")
        return value

    @model_validator(mode="after")
    def _check_space_thresholds(self) -> HumantimeSettings:
        if self.min_free_space < 0:
            raise ValueError("HUMANTIME_MIN_FREE_SPACE must not be negative")
        if self.min_free_space_warning < self.min_free_space:
            raise ValueError(
                "HUMANTIME_MIN_FREE_SPACE_WARNING must be >= HUMANTIME_MIN_FREE_SPACE"
            )
        return self

    @property
    def db_path(self) -> Path:
        return self.data_dir / "humantime.db"


def load_settings(path: Path | None = None, **overrides: Any) -> HumantimeSettings:
    """Build settings from the environment, an optional YAML file and explicit overrides.

    Values from the file win over the environment; keyword overrides win over both.
    """

    values: dict[str, Any] = {}
    if path is not None:
        config_path = Path(path).expanduser()
        if config_path.exists():
            try:
                document = yaml.safe_load(config_path.read_text(encoding="utf-8"))
            except yaml.YAMLError as exc:
                raise SettingsLoadError(f"Failed to parse YAML in {config_path}: {exc}") from exc
            if document is not None and not isinstance(document, dict):
                raise SettingsLoadError(f"Settings file {config_path} must contain a mapping")
            values.update(document or {})
    values.update(overrides)

    settings = HumantimeSettings(**values)
    settings.data_dir = settings.data_dir.expanduser().resolve()
    return settings


__all__ = ["HumantimeSettings", "SettingsLoadError", "load_settings"]
