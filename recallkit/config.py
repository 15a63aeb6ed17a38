"""
Centralized configuration management for recallkit.
"""
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import (
    DEFAULT_DB_FILE,
    DEFAULT_DESIRED_RETENTION,
    DEFAULT_SECONDS_PER_CARD,
    DEFAULT_STATE_FILE,
    DEFAULT_STATS_FILE,
)


class Settings(BaseSettings):
    """
    Application settings, loaded from RECALLKIT_* environment variables or a
    .env file.
    """

    model_config = SettingsConfigDict(
        env_prefix="RECALLKIT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Storage ---
    # "duckdb" keeps everything in one embedded database file; "file" keeps
    # review state and statistics in two JSON files.
    backend: Literal["duckdb", "file"] = "duckdb"
    db_path: Path = Path(DEFAULT_DB_FILE)
    state_file: Path = Path(DEFAULT_STATE_FILE)
    stats_file: Path = Path(DEFAULT_STATS_FILE)

    # --- Statistics ---
    # Estimated time per card when closing a session that was never ended.
    seconds_per_card: int = Field(default=DEFAULT_SECONDS_PER_CARD, gt=0)

    # --- Scheduling ---
    desired_retention: float = Field(
        default=DEFAULT_DESIRED_RETENTION, gt=0.0, lt=1.0
    )

    # --- Testing Configuration ---
    # When True, the CLI skips legacy migration on startup.
    testing_mode: bool = False


def get_settings(**overrides) -> Settings:
    """Build a fresh Settings object; keyword overrides win over the environment."""
    overrides = {k: v for k, v in overrides.items() if v is not None}
    return Settings(**overrides)
