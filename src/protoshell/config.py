"""Configuration management for ProtoShell."""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from protoshell.errors import ConfigurationError


class Settings(BaseSettings):
    """Shell settings."""

    model_config = SettingsConfigDict(
        env_prefix="PROTOSHELL_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Job Configuration
    max_concurrent_jobs: int = Field(default=10, ge=1, description="Maximum simultaneously running background jobs")
    job_retention_seconds: float = Field(
        default=300.0, ge=0, description="Seconds a finished job stays listed before eviction"
    )

    # Execution Configuration
    command_timeout_seconds: float | None = Field(
        default=None, gt=0, description="Timeout applied to each external program invocation"
    )
    extra_system_commands: list[str] = Field(
        default_factory=list, description="Program names treated as system commands in addition to the defaults"
    )
    resolve_from_path: bool = Field(default=False, description="Accept any program found on PATH")
    session_queue_size: int = Field(default=256, ge=1, description="Buffered events per interactive session")

    # Shell Context
    home_directory: str = Field(default_factory=lambda: str(Path.home()), description="Target of `cd ~`")
    working_directory: str = Field(default_factory=os.getcwd, description="Initial working directory")

    # History Configuration
    history_path: Path | None = Field(default=None, description="JSON file for persisted history")
    history_size: int = Field(default=1000, ge=1, description="Maximum retained history entries")

    # Logging Configuration
    log_level: str = Field(default="INFO", description="Log level")

    @field_validator("log_level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        return value.upper()


def get_settings(**overrides: object) -> Settings:
    """Build settings from the environment, applying explicit overrides."""

    try:
        return Settings(**overrides)  # type: ignore[arg-type]
    except ValueError as exc:
        raise ConfigurationError(str(exc)) from exc
