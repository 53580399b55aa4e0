"""Configuration management."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from dotenv import dotenv_values

if TYPE_CHECKING:
    from commhub.services.sync_scheduler import SchedulerConfig

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in _TRUE_VALUES


def _parse_int(value: str | None, default: int, name: str) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {value!r}") from e


def _parse_float(value: str | None, default: float, name: str) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {value!r}") from e


@dataclass
class Config:
    """Application configuration."""

    database_url: str
    # Sync scheduler
    sync_enabled: bool = True
    sync_interval_minutes: int = 5
    sync_max_concurrent: int = 5
    sync_initial_delay_seconds: float = 30.0
    sync_rescan_interval_seconds: float = 3600.0
    sync_batch_size: int = 50
    sync_failure_threshold: int = 3
    sync_retention_days: int = 7
    # Offline queue
    queue_max_attempts: int = 3
    queue_max_concurrent: int = 4
    # Automated processing
    automation_enabled: bool = True
    automation_interval_seconds: float = 900.0
    automation_max_concurrent_users: int = 1
    ai_timeout_seconds: float = 30.0
    trash_retention_days: int = 30
    ollama_base_url: str | None = None
    ollama_model: str = "llama3.1:8b"
    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    @classmethod
    def from_env(cls, env_file: Path | None = None) -> Config:
        """Load configuration from environment and .env file.

        Args:
            env_file: Path to .env file. If None, only the process
                     environment is consulted.

        Returns:
            Config instance with loaded values.

        Raises:
            ValueError: If required DATABASE_URL is not set or a numeric
                value cannot be parsed.
        """
        # Load from .env file if provided
        config: dict[str, Any] = {}
        if env_file and env_file.exists():
            config = dict(dotenv_values(env_file))

        def get(key: str) -> str | None:
            # Environment variables override .env file
            return os.environ.get(key) or config.get(key)

        database_url = get("DATABASE_URL")
        if not database_url:
            raise ValueError("DATABASE_URL is required")

        return cls(
            database_url=database_url,
            sync_enabled=_parse_bool(get("SYNC_ENABLED"), True),
            sync_interval_minutes=_parse_int(
                get("SYNC_INTERVAL_MINUTES"), 5, "SYNC_INTERVAL_MINUTES"
            ),
            sync_max_concurrent=_parse_int(get("SYNC_MAX_CONCURRENT"), 5, "SYNC_MAX_CONCURRENT"),
            sync_initial_delay_seconds=_parse_float(
                get("SYNC_INITIAL_DELAY_SECONDS"), 30.0, "SYNC_INITIAL_DELAY_SECONDS"
            ),
            sync_rescan_interval_seconds=_parse_float(
                get("SYNC_RESCAN_INTERVAL_SECONDS"), 3600.0, "SYNC_RESCAN_INTERVAL_SECONDS"
            ),
            sync_batch_size=_parse_int(get("SYNC_BATCH_SIZE"), 50, "SYNC_BATCH_SIZE"),
            sync_failure_threshold=_parse_int(
                get("SYNC_FAILURE_THRESHOLD"), 3, "SYNC_FAILURE_THRESHOLD"
            ),
            sync_retention_days=_parse_int(get("SYNC_RETENTION_DAYS"), 7, "SYNC_RETENTION_DAYS"),
            queue_max_attempts=_parse_int(get("QUEUE_MAX_ATTEMPTS"), 3, "QUEUE_MAX_ATTEMPTS"),
            queue_max_concurrent=_parse_int(
                get("QUEUE_MAX_CONCURRENT"), 4, "QUEUE_MAX_CONCURRENT"
            ),
            automation_enabled=_parse_bool(get("AUTOMATION_ENABLED"), True),
            automation_interval_seconds=_parse_float(
                get("AUTOMATION_INTERVAL_SECONDS"), 900.0, "AUTOMATION_INTERVAL_SECONDS"
            ),
            automation_max_concurrent_users=_parse_int(
                get("AUTOMATION_MAX_CONCURRENT_USERS"), 1, "AUTOMATION_MAX_CONCURRENT_USERS"
            ),
            ai_timeout_seconds=_parse_float(get("AI_TIMEOUT_SECONDS"), 30.0, "AI_TIMEOUT_SECONDS"),
            trash_retention_days=_parse_int(
                get("TRASH_RETENTION_DAYS"), 30, "TRASH_RETENTION_DAYS"
            ),
            ollama_base_url=get("OLLAMA_BASE_URL"),
            ollama_model=get("OLLAMA_MODEL") or "llama3.1:8b",
            log_level=(get("LOG_LEVEL") or "INFO").upper(),
            log_json=_parse_bool(get("LOG_JSON"), False),
        )

    def validate(self) -> list[str]:
        """Validate configuration.

        Returns:
            List of missing or invalid field names.
        """
        problems = []
        if not self.database_url:
            problems.append("DATABASE_URL")
        if self.sync_interval_minutes <= 0:
            problems.append("SYNC_INTERVAL_MINUTES")
        if self.sync_max_concurrent <= 0:
            problems.append("SYNC_MAX_CONCURRENT")
        if self.sync_batch_size <= 0:
            problems.append("SYNC_BATCH_SIZE")
        if self.sync_failure_threshold <= 0:
            problems.append("SYNC_FAILURE_THRESHOLD")
        if self.queue_max_attempts <= 0:
            problems.append("QUEUE_MAX_ATTEMPTS")
        if self.automation_max_concurrent_users <= 0:
            problems.append("AUTOMATION_MAX_CONCURRENT_USERS")
        if self.trash_retention_days <= 0:
            problems.append("TRASH_RETENTION_DAYS")
        return problems

    def has_ollama(self) -> bool:
        """Check if an Ollama server is configured."""
        return bool(self.ollama_base_url)

    def scheduler_config(self) -> SchedulerConfig:
        """Build the scheduler's hot-reloadable configuration.

        Returns:
            SchedulerConfig populated from this config.
        """
        from commhub.services.sync_scheduler import SchedulerConfig

        return SchedulerConfig(
            default_interval_minutes=self.sync_interval_minutes,
            enabled=self.sync_enabled,
            max_concurrent=self.sync_max_concurrent,
            initial_delay_seconds=self.sync_initial_delay_seconds,
            rescan_interval_seconds=self.sync_rescan_interval_seconds,
        )
