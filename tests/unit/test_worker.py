"""Tests for commhub.worker."""

from __future__ import annotations

import asyncio
import uuid
from pathlib import Path

import pytest

from commhub.ai.ollama import OllamaDecisionService
from commhub.core.config import Config
from commhub.models.offline_operation import QueuedOperation
from commhub.repositories.offline_operation import OfflineOperationRepository
from commhub.worker import Worker


@pytest.fixture
def config(tmp_path: Path) -> Config:
    """Config on a temporary SQLite database without an AI service."""
    return Config(
        database_url=f"sqlite:///{tmp_path / 'worker.db'}",
        sync_initial_delay_seconds=3600,
    )


class TestWorkerWiring:
    """Tests for component wiring."""

    def test_no_pipeline_without_ai(self, config: Config) -> None:
        """Test automation is off when no AI service is configured."""
        worker = Worker(config)

        assert worker.ai_service is None
        assert worker.pipeline is None
        with pytest.raises(RuntimeError, match="OLLAMA_BASE_URL"):
            worker.require_pipeline()

    @pytest.mark.asyncio
    async def test_ollama_pipeline(self, config: Config) -> None:
        """Test an Ollama URL wires the pipeline with configured settings."""
        config.ollama_base_url = "http://localhost:11434"
        config.ollama_model = "mistral"
        config.automation_interval_seconds = 120
        config.sync_batch_size = 25
        config.queue_max_attempts = 5
        config.trash_retention_days = 14

        worker = Worker(config)

        assert isinstance(worker.ai_service, OllamaDecisionService)
        assert worker.ai_service.model == "mistral"
        assert worker.require_pipeline().interval_seconds == 120
        assert worker.runner.batch_size == 25
        assert worker.queue.max_attempts == 5
        assert worker.require_pipeline().trash_retention_days == 14
        assert worker.scheduler.config.initial_delay_seconds == 3600
        await worker.close_ai()


class TestWorkerLifecycle:
    """Tests for start, shutdown and run_forever."""

    @pytest.mark.asyncio
    async def test_start_recovers_and_shutdown_stops(self, config: Config) -> None:
        """Test start migrates, recovers operations and starts the scheduler."""
        user_id = uuid.uuid4()
        seed = Worker(config)
        await seed.database.connect()
        await seed.database.migrate()
        async with seed.database.session() as session:
            await OfflineOperationRepository(session).create(
                QueuedOperation(
                    user_id=user_id,
                    operation_type="mark_read",
                    resource_type="message",
                    resource_id=str(uuid.uuid4()),
                    payload={},
                    status="processing",
                    attempt_count=1,
                )
            )
        await seed.database.disconnect()

        worker = Worker(config)
        await worker.start()
        try:
            assert worker.scheduler.is_running is True
            pending = await worker.queue.get_pending_operations(user_id)
            assert len(pending) == 1
        finally:
            await worker.shutdown()

        assert worker.scheduler.is_running is False

    @pytest.mark.asyncio
    async def test_start_runs_pipeline_when_enabled(self, config: Config) -> None:
        """Test the automation loop starts with a configured AI service."""
        config.ollama_base_url = "http://localhost:11434"
        worker = Worker(config)

        await worker.start()
        try:
            assert worker.require_pipeline().is_running is True
        finally:
            await worker.shutdown()

        assert worker.require_pipeline().is_running is False

    @pytest.mark.asyncio
    async def test_run_forever_until_stop(self, config: Config) -> None:
        """Test run_forever returns after request_stop and shuts down."""
        worker = Worker(config)

        task = asyncio.create_task(worker.run_forever())
        while not worker.scheduler.is_running:
            await asyncio.sleep(0.01)
        worker.request_stop()
        await asyncio.wait_for(task, timeout=5)

        assert worker.scheduler.is_running is False

