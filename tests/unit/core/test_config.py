"""Tests for commhub.core.config."""

from __future__ import annotations

from pathlib import Path

import pytest

from commhub.core.config import Config


class TestConfig:
    """Tests for Config class."""

    def test_from_env_with_database_url(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test loading config from environment with DATABASE_URL."""
        monkeypatch.setenv("DATABASE_URL", "postgresql://localhost/testdb")
        monkeypatch.delenv("SYNC_INTERVAL_MINUTES", raising=False)
        monkeypatch.delenv("OLLAMA_BASE_URL", raising=False)

        config = Config.from_env()

        assert config.database_url == "postgresql://localhost/testdb"
        assert config.sync_interval_minutes == 5
        assert config.ollama_base_url is None

    def test_from_env_missing_database_url(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that missing DATABASE_URL raises ValueError."""
        monkeypatch.delenv("DATABASE_URL", raising=False)

        with pytest.raises(ValueError, match="DATABASE_URL is required"):
            Config.from_env()

    def test_from_env_with_all_values(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test loading config with scheduler, queue and automation values set."""
        monkeypatch.setenv("DATABASE_URL", "postgresql://localhost/testdb")
        monkeypatch.setenv("SYNC_ENABLED", "false")
        monkeypatch.setenv("SYNC_INTERVAL_MINUTES", "15")
        monkeypatch.setenv("SYNC_MAX_CONCURRENT", "2")
        monkeypatch.setenv("SYNC_FAILURE_THRESHOLD", "4")
        monkeypatch.setenv("QUEUE_MAX_ATTEMPTS", "5")
        monkeypatch.setenv("AI_TIMEOUT_SECONDS", "12.5")
        monkeypatch.setenv("TRASH_RETENTION_DAYS", "7")
        monkeypatch.setenv("OLLAMA_BASE_URL", "http://ollama:11434")
        monkeypatch.setenv("LOG_LEVEL", "debug")

        config = Config.from_env()

        assert config.sync_enabled is False
        assert config.sync_interval_minutes == 15
        assert config.sync_max_concurrent == 2
        assert config.sync_failure_threshold == 4
        assert config.queue_max_attempts == 5
        assert config.ai_timeout_seconds == 12.5
        assert config.trash_retention_days == 7
        assert config.ollama_base_url == "http://ollama:11434"
        assert config.log_level == "DEBUG"

    def test_from_env_invalid_integer(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that a non-numeric interval raises ValueError naming the key."""
        monkeypatch.setenv("DATABASE_URL", "postgresql://localhost/testdb")
        monkeypatch.setenv("SYNC_INTERVAL_MINUTES", "often")

        with pytest.raises(ValueError, match="SYNC_INTERVAL_MINUTES"):
            Config.from_env()

    def test_validate_with_valid_config(self) -> None:
        """Test validation with valid config."""
        config = Config(database_url="postgresql://localhost/testdb")
        assert config.validate() == []

    def test_validate_with_missing_database_url(self) -> None:
        """Test validation with missing database URL."""
        config = Config(database_url="")
        assert "DATABASE_URL" in config.validate()

    def test_validate_rejects_non_positive_values(self) -> None:
        """Test validation flags zero intervals and concurrency."""
        config = Config(database_url="test", sync_interval_minutes=0, sync_max_concurrent=0)
        problems = config.validate()
        assert "SYNC_INTERVAL_MINUTES" in problems
        assert "SYNC_MAX_CONCURRENT" in problems

    def test_validate_rejects_non_positive_trash_retention(self) -> None:
        """Test validation flags a zero trash retention."""
        config = Config(database_url="test", trash_retention_days=0)
        assert "TRASH_RETENTION_DAYS" in config.validate()

    def test_has_ollama(self) -> None:
        """Test has_ollama method."""
        assert Config(database_url="test", ollama_base_url="http://x").has_ollama() is True
        assert Config(database_url="test").has_ollama() is False

    def test_scheduler_config(self) -> None:
        """Test scheduler_config carries the sync settings."""
        config = Config(
            database_url="test",
            sync_enabled=False,
            sync_interval_minutes=7,
            sync_max_concurrent=3,
            sync_initial_delay_seconds=1.0,
            sync_rescan_interval_seconds=60.0,
        )

        scheduler_config = config.scheduler_config()

        assert scheduler_config.enabled is False
        assert scheduler_config.default_interval_minutes == 7
        assert scheduler_config.max_concurrent == 3
        assert scheduler_config.initial_delay_seconds == 1.0
        assert scheduler_config.rescan_interval_seconds == 60.0

    def test_from_env_with_env_file(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        """Test loading config from .env file."""
        env_file = tmp_path / ".env"
        env_file.write_text("DATABASE_URL=postgresql://from_file/db\nSYNC_BATCH_SIZE=25\n")

        monkeypatch.delenv("DATABASE_URL", raising=False)
        monkeypatch.delenv("SYNC_BATCH_SIZE", raising=False)

        config = Config.from_env(env_file=env_file)

        assert config.database_url == "postgresql://from_file/db"
        assert config.sync_batch_size == 25

    def test_env_overrides_file(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        """Test that environment variables override .env file."""
        env_file = tmp_path / ".env"
        env_file.write_text("DATABASE_URL=postgresql://from_file/db\n")

        monkeypatch.setenv("DATABASE_URL", "postgresql://from_env/db")

        config = Config.from_env(env_file=env_file)

        assert config.database_url == "postgresql://from_env/db"
