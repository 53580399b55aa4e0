"""Background worker process.

Wires the database, fetch clients, AI service and the four background
components together and runs them until SIGINT or SIGTERM.
"""

from __future__ import annotations

import asyncio
import signal

import structlog

from commhub.ai.base import AIDecisionService
from commhub.ai.ollama import OllamaDecisionService
from commhub.core.config import Config
from commhub.core.database import Database
from commhub.providers.registry import FetchClientRegistry
from commhub.services.automation import AutomatedProcessingPipeline
from commhub.services.offline_queue import OfflineQueueManager
from commhub.services.reply_sender import ReplySender
from commhub.services.sync_progress import SyncProgressTracker
from commhub.services.sync_runner import SyncRunner
from commhub.services.sync_scheduler import AccountSyncScheduler

logger = structlog.get_logger(__name__)


class Worker:
    """Owns every long-lived component of the background process.

    Fetch clients are registered on ``registry`` by the embedding
    application before ``start()``; accounts whose protocol has no client
    fail their sync runs until one is registered.
    """

    def __init__(
        self,
        config: Config,
        *,
        database: Database | None = None,
        registry: FetchClientRegistry | None = None,
        ai_service: AIDecisionService | None = None,
    ) -> None:
        """Initialize worker.

        Args:
            config: Application configuration.
            database: Database to use, built from ``config`` if omitted.
            registry: Fetch client registry, empty if omitted.
            ai_service: AI decision service; defaults to Ollama when
                ``OLLAMA_BASE_URL`` is set, otherwise automation is disabled.
        """
        self.config = config
        self.database = database or Database(config.database_url)
        self.registry = registry or FetchClientRegistry()
        if ai_service is None and config.has_ollama():
            ai_service = OllamaDecisionService(
                config.ollama_base_url or "",
                model=config.ollama_model,
                timeout=config.ai_timeout_seconds,
            )
        self.ai_service = ai_service

        session_factory = self.database.session
        self.tracker = SyncProgressTracker(
            session_factory,
            retention_days=config.sync_retention_days,
            default_batch_size=config.sync_batch_size,
        )
        self.runner = SyncRunner(
            session_factory,
            self.registry,
            self.tracker,
            batch_size=config.sync_batch_size,
            failure_threshold=config.sync_failure_threshold,
        )
        self.scheduler = AccountSyncScheduler(
            session_factory, self.runner, self.tracker, config.scheduler_config()
        )
        self.reply_sender = ReplySender(session_factory, self.registry)
        self.queue = OfflineQueueManager(
            session_factory,
            self.reply_sender,
            max_attempts=config.queue_max_attempts,
            max_concurrent=config.queue_max_concurrent,
        )
        self.pipeline: AutomatedProcessingPipeline | None = None
        if ai_service is not None:
            self.pipeline = AutomatedProcessingPipeline(
                session_factory,
                ai_service,
                self.reply_sender,
                interval_seconds=config.automation_interval_seconds,
                ai_timeout_seconds=config.ai_timeout_seconds,
                max_concurrent_users=config.automation_max_concurrent_users,
                trash_retention_days=config.trash_retention_days,
            )
        self._stop_event = asyncio.Event()

    async def start(self) -> None:
        """Connect and migrate storage, recover interrupted work and start loops."""
        await self.database.connect()
        await self.database.migrate()

        await self.queue.recover_processing()

        await self.scheduler.start()

        if self.pipeline is not None and self.config.automation_enabled:
            self.pipeline.start()
        elif self.pipeline is None:
            await logger.awarning("automation_disabled", reason="no AI service configured")

        await logger.ainfo(
            "worker_started",
            providers=[p.value for p in self.registry.list_providers()],
            automation=self.pipeline is not None and self.pipeline.is_running,
        )

    async def shutdown(self) -> None:
        """Stop background loops, wait for running syncs and release resources."""
        await logger.ainfo("worker_stopping")
        if self.pipeline is not None:
            await self.pipeline.stop()
        await self.scheduler.shutdown()
        await self.close_ai()
        await self.database.disconnect()
        await logger.ainfo("worker_stopped")

    def require_pipeline(self) -> AutomatedProcessingPipeline:
        """Get the automation pipeline.

        Raises:
            RuntimeError: If no AI service is configured.
        """
        if self.pipeline is None:
            raise RuntimeError("Automation needs an AI service; set OLLAMA_BASE_URL")
        return self.pipeline

    async def close_ai(self) -> None:
        """Close the AI service's HTTP client, if this worker created one."""
        if isinstance(self.ai_service, OllamaDecisionService):
            await self.ai_service.close()

    def request_stop(self) -> None:
        """Ask ``run_forever`` to return."""
        self._stop_event.set()

    async def run_forever(self) -> None:
        """Start, block until SIGINT/SIGTERM or ``request_stop``, then shut down."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self.request_stop)

        try:
            await self.start()
            await self._stop_event.wait()
        finally:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)
            await self.shutdown()
