"""Single-account sync pass.

A pass claims the account (``syncing``), opens a tracked run, fetches
everything newer than the account's cursor, stores it in batches and
releases the account. Per-message failures land in the run's error list;
connection-level failures fail the run and count toward escalation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING
from uuid import UUID

import structlog

from commhub.models.account import AccountSyncStatus
from commhub.models.sync_run import SyncType
from commhub.providers.base import AuthorizationError, ProviderError
from commhub.providers.registry import ProviderNotFoundError
from commhub.repositories.account import AccountRepository
from commhub.repositories.message import MessageRepository
from commhub.schemas.sync import SyncProgressUpdate
from commhub.services.sync_progress import SyncAlreadyActiveError

if TYPE_CHECKING:
    from commhub.core.database import SessionFactory
    from commhub.core.types import FetchedMessage
    from commhub.models.account import ConnectedAccount
    from commhub.providers.base import FetchClient, FetchSession
    from commhub.providers.registry import FetchClientRegistry
    from commhub.services.sync_progress import SyncProgressTracker

logger = structlog.get_logger(__name__)


@dataclass
class SyncOutcome:
    """Result of one sync pass.

    Attributes:
        account_id: Account synced.
        success: True if the run completed.
        skipped: True if the pass did not run (account busy or missing).
        cancelled: True if the run was cancelled mid-way.
        escalated: True if this failure moved the account to ``error``.
        sync_id: Tracked run, when one was created.
        messages_fetched: Messages returned by the provider.
        messages_stored: New messages inserted.
        messages_failed: Messages that could not be stored.
        error: Failure description.
    """

    account_id: UUID
    success: bool = False
    skipped: bool = False
    cancelled: bool = False
    escalated: bool = False
    sync_id: UUID | None = None
    messages_fetched: int = 0
    messages_stored: int = 0
    messages_failed: int = 0
    error: str | None = None


class SyncRunner:
    """Executes sync passes for single accounts."""

    def __init__(
        self,
        session_factory: SessionFactory,
        registry: FetchClientRegistry,
        tracker: SyncProgressTracker,
        *,
        batch_size: int = 50,
        failure_threshold: int = 3,
    ) -> None:
        """Initialize sync runner.

        Args:
            session_factory: Factory for async sessions.
            registry: Fetch clients by protocol.
            tracker: Sync progress tracker.
            batch_size: Messages stored per batch.
            failure_threshold: Consecutive connection failures before an
                account moves to ``error``.
        """
        self._session_factory = session_factory
        self._registry = registry
        self._tracker = tracker
        self.batch_size = batch_size
        self.failure_threshold = failure_threshold

    async def run(self, account_id: UUID) -> SyncOutcome:
        """Run one sync pass for an account.

        Args:
            account_id: Account to sync.

        Returns:
            Outcome of the pass. Failures are reported, not raised.
        """
        outcome = SyncOutcome(account_id=account_id)

        async with self._session_factory() as session:
            repo = AccountRepository(session)
            account = await repo.get_by_id(account_id)
            if account is None:
                outcome.skipped = True
                outcome.error = "Account not found"
                return outcome
            previous_status = account.sync_status
            if not await repo.claim_for_sync(account_id, previous_status):
                await logger.ainfo(
                    "sync_claim_lost", account_id=str(account_id), status=previous_status
                )
                outcome.skipped = True
                return outcome

        log = logger.bind(account_id=str(account_id), protocol=account.protocol)
        sync_type = SyncType.INITIAL if account.sync_since_cursor is None else SyncType.INCREMENTAL
        try:
            run = await self._tracker.create_sync_progress(
                account_id, account.user_id, sync_type, self.batch_size
            )
        except SyncAlreadyActiveError:
            await self._release(account_id, previous_status)
            outcome.skipped = True
            return outcome
        outcome.sync_id = run.sync_id

        try:
            client = self._registry.get(account.protocol)
        except ProviderNotFoundError as e:
            await log.awarning("sync_protocol_unsupported", error=str(e))
            await self._tracker.complete_sync(run.sync_id, success=False, error=str(e))
            await self._release(account_id, previous_status)
            outcome.error = str(e)
            return outcome

        await log.ainfo("sync_started", sync_id=str(run.sync_id), sync_type=sync_type.value)
        fetch_session: FetchSession | None = None
        try:
            fetch_session = await client.connect(account)
            result = await client.list_since(fetch_session, account.sync_since_cursor)
            outcome.messages_fetched = len(result.messages)
            if await self._tracker.start_sync(run.sync_id, total_messages=len(result.messages)):
                await self._store_batches(account, run.sync_id, result.messages, outcome)
            else:
                # Cancelled while pending
                outcome.cancelled = True
        except Exception as e:
            await self._fail(account_id, previous_status, run.sync_id, e, outcome)
            return outcome
        finally:
            if fetch_session is not None:
                await self._disconnect(client, fetch_session)

        # A run cancelled during the last batch refuses completion
        if outcome.cancelled or not await self._tracker.complete_sync(run.sync_id, success=True):
            outcome.cancelled = True
            await self._release(account_id, previous_status)
            await log.ainfo(
                "sync_cancelled", sync_id=str(run.sync_id), stored=outcome.messages_stored
            )
            return outcome

        async with self._session_factory() as session:
            await AccountRepository(session).record_sync_success(
                account_id, previous_status, result.cursor
            )
        outcome.success = True
        await log.ainfo(
            "sync_completed",
            sync_id=str(run.sync_id),
            fetched=outcome.messages_fetched,
            stored=outcome.messages_stored,
            failed=outcome.messages_failed,
        )
        return outcome

    async def _store_batches(
        self,
        account: ConnectedAccount,
        sync_id: UUID,
        messages: list[FetchedMessage],
        outcome: SyncOutcome,
    ) -> None:
        processed = 0
        total_batches = -(-len(messages) // self.batch_size)
        for batch_index in range(total_batches):
            # Cancellation is cooperative and checked between batches
            if await self._tracker.is_cancelled(sync_id):
                outcome.cancelled = True
                return
            batch = messages[batch_index * self.batch_size : (batch_index + 1) * self.batch_size]
            async with self._session_factory() as session:
                store = MessageRepository(session)
                for data in batch:
                    try:
                        if await store.store_synced_message(account, data):
                            outcome.messages_stored += 1
                    except Exception as e:
                        await session.rollback()
                        outcome.messages_failed += 1
                        await self._tracker.add_error(
                            sync_id, str(e), message_id=data.get("external_id")
                        )
                    processed += 1
            await self._tracker.update_progress(
                sync_id,
                SyncProgressUpdate(
                    processed_messages=processed,
                    stored_messages=outcome.messages_stored,
                    current_batch=batch_index + 1,
                    total_batches=total_batches,
                ),
            )

    async def _fail(
        self,
        account_id: UUID,
        previous_status: str,
        sync_id: UUID,
        error: Exception,
        outcome: SyncOutcome,
    ) -> None:
        message = str(error) or type(error).__name__
        outcome.error = message
        if not isinstance(error, ProviderError):
            await logger.aexception(
                "sync_failed_unexpectedly", account_id=str(account_id), sync_id=str(sync_id)
            )
        await self._tracker.complete_sync(sync_id, success=False, error=message)
        async with self._session_factory() as session:
            account = await AccountRepository(session).record_sync_failure(
                account_id,
                previous_status,
                message,
                failure_threshold=self.failure_threshold,
                needs_reauth=isinstance(error, AuthorizationError),
            )
        if account is not None and account.sync_status == AccountSyncStatus.ERROR.value:
            outcome.escalated = True
        await logger.awarning(
            "sync_failed",
            account_id=str(account_id),
            sync_id=str(sync_id),
            error=message,
            consecutive_failures=account.consecutive_failures if account else None,
            escalated=outcome.escalated,
        )

    async def _release(self, account_id: UUID, status: str) -> None:
        async with self._session_factory() as session:
            await AccountRepository(session).release_sync(account_id, status)

    async def _disconnect(self, client: FetchClient, fetch_session: FetchSession) -> None:
        try:
            await client.disconnect(fetch_session)
        except Exception as e:
            await logger.awarning(
                "fetch_client_disconnect_failed",
                account_id=str(fetch_session.account_id),
                error=str(e),
            )
