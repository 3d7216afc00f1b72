"""Configuration utilities for the DM script studio backend."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from the environment."""

    environment: str = Field(
        default="development",
        description="Name of the current environment (development, staging, production).",
    )
    sessions_path: Path = Field(
        default=Path("data/sessions.json"),
        description="Filesystem location where session snapshots are stored as JSON.",
    )
    scripts_path: Path = Field(
        default=Path("data/scripts.json"),
        description="Filesystem location where script definitions are stored as JSON.",
    )
    max_steps: int = Field(
        default=200,
        ge=1,
        description="Steps a session may take before it is failed as a runaway loop.",
    )
    max_input_length: int = Field(
        default=600,
        ge=1,
        description="Longest customer message accepted by the step endpoint.",
    )

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    return Settings()


def ensure_data_directory(path: Path) -> None:
    """Ensure the directory containing the data file exists."""

    path.parent.mkdir(parents=True, exist_ok=True)
