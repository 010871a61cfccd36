"""Centralized archive/replay configuration using Pydantic Settings (v2).

This module exposes a single, cached `settings` instance that reads from:
- Real environment variables (highest precedence)
- `.env` files at the repository root: .env, .env.local, .env.dev/.env.test/.env.prod

Retention, analytics cache lease and replay pacing all default from here so the
CLI, the API and tests agree on one set of knobs.
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

EnvName = Literal["dev", "test", "prod"]
LogLevelName = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
StorageBackend = Literal["memory", "disk"]


class Settings(BaseSettings):
    """Typed configuration loaded from env and `.env` files.

    Attributes
    ----------
    environment : EnvName
        Runtime environment flag; maps from `KOT_ENV`.
    log_level : LogLevelName
        Global log level string; maps from `LOG_LEVEL`.
    storage_backend : StorageBackend
        `memory` for a volatile store, `disk` for one JSON file per key.
    archive_dir : Path
        Root directory of the disk store; maps from `KOT_ARCHIVE_DIR`.
    archive_retention_days / archive_max_per_type : int
        Default retention policy applied to auto archives.
    analytics_cache_seconds : int
        Lease of the memoized analytics aggregate.
    replay_interval_ms : int
        Delay between replayed entries at speed 1.0.
    """

    environment: EnvName = Field(default="dev", alias="KOT_ENV")
    log_level: LogLevelName = Field(default="INFO", alias="LOG_LEVEL")

    storage_backend: StorageBackend = Field(default="disk", alias="KOT_STORAGE_BACKEND")
    archive_dir: Path = Field(default=Path("artifacts") / "archives", alias="KOT_ARCHIVE_DIR")

    archive_retention_days: int = Field(default=3, ge=1, alias="KOT_ARCHIVE_RETENTION_DAYS")
    archive_max_per_type: int = Field(default=10, ge=1, alias="KOT_ARCHIVE_MAX_PER_TYPE")
    auto_archive_game_logs: bool = Field(default=True, alias="KOT_AUTO_ARCHIVE_GAME_LOGS")
    auto_archive_decision_logs: bool = Field(default=True, alias="KOT_AUTO_ARCHIVE_AIDT_LOGS")

    analytics_cache_seconds: int = Field(default=300, ge=0, alias="KOT_ANALYTICS_CACHE_SECONDS")
    analytics_max_game_archives: int = Field(default=50, ge=1, alias="KOT_ANALYTICS_MAX_GAMES")
    analytics_max_decision_archives: int = Field(
        default=30, ge=1, alias="KOT_ANALYTICS_MAX_DECISIONS"
    )

    replay_interval_ms: int = Field(default=600, ge=0, alias="KOT_REPLAY_INTERVAL_MS")

    model_config = SettingsConfigDict(
        env_file=(".env", ".env.local", ".env.dev", ".env.test", ".env.prod"),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def is_dev(self) -> bool:
        """Return True if running in the development environment."""
        return self.environment == "dev"

    @property
    def is_test(self) -> bool:
        """Return True if running in the test environment."""
        return self.environment == "test"

    @property
    def is_prod(self) -> bool:
        """Return True if running in the production environment."""
        return self.environment == "prod"

    def log_level_numeric(self) -> int:
        """Return the numeric logging level corresponding to `self.log_level`."""
        return getattr(logging, self.log_level, logging.INFO)


@lru_cache(maxsize=1)
def load_settings() -> Settings:
    """Create and cache a `Settings` instance.

    Tests force a rebuild via `load_settings.cache_clear()` after mutating
    `os.environ`.
    """
    os.environ.setdefault("KOT_ENV", "dev")
    return Settings()


settings: Settings = load_settings()


def get_logger(name: str = "kotarchive") -> logging.Logger:
    """Return a process-global logger configured to the current log level."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s")
        )
        logger.addHandler(handler)
    logger.setLevel(load_settings().log_level_numeric())
    logger.propagate = False
    return logger
