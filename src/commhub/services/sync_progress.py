"""Sync progress tracking service.

Records the lifecycle of every sync run:

    pending -> syncing -> completed | failed | cancelled
    pending -> failed | cancelled

No transition leaves a terminal state. Each transition is a single guarded
UPDATE, so a late progress report can never resurrect a cancelled run.
"""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING, Any
from uuid import UUID

import structlog

from commhub.models.base import as_utc, utcnow
from commhub.models.sync_run import (
    ACTIVE_SYNC_STATUSES,
    SyncRun,
    SyncRunStatus,
    SyncType,
)
from commhub.repositories.sync_run import SyncRunRepository
from commhub.schemas.sync import SyncProgressInfo

if TYPE_CHECKING:
    from datetime import datetime

    from commhub.core.database import SessionFactory
    from commhub.schemas.sync import SyncProgressUpdate

logger = structlog.get_logger(__name__)


class SyncProgressError(Exception):
    """Base exception for sync progress errors."""

    def __init__(self, message: str, sync_id: UUID | None = None) -> None:
        """Initialize sync progress error.

        Args:
            message: Error description.
            sync_id: Sync run involved.
        """
        super().__init__(message)
        self.sync_id = sync_id


class SyncRunNotFoundError(SyncProgressError):
    """Raised when a sync run does not exist."""


class InvalidSyncTransitionError(SyncProgressError):
    """Raised when a run cannot move to the requested status."""


class SyncAlreadyActiveError(SyncProgressError):
    """Raised when an account already has a pending or syncing run."""

    def __init__(self, account_id: UUID, sync_id: UUID) -> None:
        """Initialize error.

        Args:
            account_id: Account with the active run.
            sync_id: The active run.
        """
        super().__init__(f"Account {account_id} already has active sync {sync_id}", sync_id)
        self.account_id = account_id


def estimate_remaining_ms(
    started_at: datetime | None, processed: int, total: int, now: datetime
) -> int | None:
    """Estimate remaining time from the average time per processed message.

    Args:
        started_at: When the run started.
        processed: Messages processed so far.
        total: Messages expected.
        now: Current time.

    Returns:
        Milliseconds remaining, None before the first message is processed.
    """
    if processed <= 0 or total <= 0:
        return None
    started = as_utc(started_at) or now
    elapsed_ms = max((now - started).total_seconds() * 1000, 0.0)
    per_message = elapsed_ms / processed
    return round(per_message * max(total - processed, 0))


class SyncProgressTracker:
    """Service recording sync run state.

    Every call opens its own session from the injected factory, so the
    tracker can be shared by concurrent sync runners.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        retention_days: int = 7,
        default_batch_size: int = 50,
    ) -> None:
        """Initialize tracker.

        Args:
            session_factory: Factory for async sessions.
            retention_days: Days terminal runs stay visible.
            default_batch_size: Batch size for new runs.
        """
        self._session_factory = session_factory
        self.retention_days = retention_days
        self.default_batch_size = default_batch_size

    def _retention_cutoff(self) -> datetime:
        return utcnow() - timedelta(days=self.retention_days)

    async def create_sync_progress(
        self,
        account_id: UUID,
        user_id: UUID,
        sync_type: SyncType = SyncType.INCREMENTAL,
        batch_size: int | None = None,
    ) -> SyncRun:
        """Create a pending run for an account.

        Args:
            account_id: Account to sync.
            user_id: Owning user.
            sync_type: Kind of sync pass.
            batch_size: Messages per batch, defaults to the tracker's.

        Returns:
            The new run.

        Raises:
            SyncAlreadyActiveError: If the account already has an active run.
        """
        async with self._session_factory() as session:
            repo = SyncRunRepository(session)
            existing = await repo.get_active_for_account(account_id)
            if existing is not None:
                await logger.awarning(
                    "sync_already_active",
                    account_id=str(account_id),
                    sync_id=str(existing.sync_id),
                )
                raise SyncAlreadyActiveError(account_id, existing.sync_id)
            run = await repo.create(
                account_id=account_id,
                user_id=user_id,
                sync_type=sync_type,
                batch_size=batch_size or self.default_batch_size,
            )
        await logger.ainfo(
            "sync_run_created",
            sync_id=str(run.sync_id),
            account_id=str(account_id),
            sync_type=sync_type.value,
        )
        return run

    async def start_sync(self, sync_id: UUID, total_messages: int = 0) -> bool:
        """Move a pending run to syncing.

        Args:
            sync_id: Run to start.
            total_messages: Messages expected in this run.

        Returns:
            True if the run started, False if it was no longer pending.
        """
        async with self._session_factory() as session:
            repo = SyncRunRepository(session)
            run = await repo.get_by_sync_id(sync_id)
            batch_size = run.batch_size if run is not None else self.default_batch_size
            started = await repo.transition(
                sync_id,
                [SyncRunStatus.PENDING.value],
                SyncRunStatus.SYNCING,
                total_messages=total_messages,
                total_batches=-(-total_messages // batch_size) if batch_size > 0 else 0,
                started_at=utcnow(),
            )
        if not started:
            await logger.awarning("sync_start_rejected", sync_id=str(sync_id))
        return started

    async def update_progress(self, sync_id: UUID, update: SyncProgressUpdate) -> SyncRun | None:
        """Apply counter updates to a running sync and refresh its ETA.

        Args:
            sync_id: Run to update.
            update: Counters to set.

        Returns:
            Updated run, None if the run is no longer active.
        """
        async with self._session_factory() as session:
            repo = SyncRunRepository(session)
            run = await repo.get_by_sync_id(sync_id)
            if run is None or run.status not in ACTIVE_SYNC_STATUSES:
                return None
            values: dict[str, Any] = update.model_dump(exclude_unset=True, exclude_none=True)
            values["estimated_time_remaining_ms"] = estimate_remaining_ms(
                run.started_at,
                values.get("processed_messages", run.processed_messages),
                values.get("total_messages", run.total_messages),
                utcnow(),
            )
            if not await repo.update_active(sync_id, **values):
                return None
            return await repo.get_by_sync_id(sync_id)

    async def add_error(self, sync_id: UUID, error: str, message_id: str | None = None) -> bool:
        """Record a per-message error and count the message as failed.

        Args:
            sync_id: Run the error belongs to.
            error: Error description.
            message_id: External message ID, if the error concerns one message.

        Returns:
            True if recorded, False if the run is no longer active.
        """
        async with self._session_factory() as session:
            repo = SyncRunRepository(session)
            run = await repo.get_by_sync_id(sync_id)
            if run is None or run.status not in ACTIVE_SYNC_STATUSES:
                return False
            entry = {"message_id": message_id, "error": error, "timestamp": utcnow().isoformat()}
            return await repo.update_active(
                sync_id,
                errors=[*(run.errors or []), entry],
                failed_messages=run.failed_messages + 1,
            )

    async def complete_sync(self, sync_id: UUID, success: bool, error: str | None = None) -> bool:
        """Finish a run as completed or failed.

        Args:
            sync_id: Run to finish.
            success: True for completed, False for failed.
            error: Failure reason appended to the error list.

        Returns:
            True if the run was finished, False if it was already terminal.
        """
        async with self._session_factory() as session:
            repo = SyncRunRepository(session)
            values: dict[str, Any] = {}
            if error is not None:
                run = await repo.get_by_sync_id(sync_id)
                if run is not None:
                    entry = {"message_id": None, "error": error, "timestamp": utcnow().isoformat()}
                    values["errors"] = [*(run.errors or []), entry]
            if success:
                done = await repo.transition(
                    sync_id, [SyncRunStatus.SYNCING.value], SyncRunStatus.COMPLETED, **values
                )
            else:
                done = await repo.transition(
                    sync_id, list(ACTIVE_SYNC_STATUSES), SyncRunStatus.FAILED, **values
                )
        await logger.ainfo(
            "sync_run_finished",
            sync_id=str(sync_id),
            success=success,
            applied=done,
        )
        return done

    async def is_cancelled(self, sync_id: UUID) -> bool:
        """Check if a run was cancelled."""
        async with self._session_factory() as session:
            run = await SyncRunRepository(session).get_by_sync_id(sync_id)
        return run is not None and run.status == SyncRunStatus.CANCELLED.value

    async def cancel_sync(self, sync_id: UUID) -> SyncRun:
        """Cancel an active run.

        The runner notices at its next batch boundary; counts so far are kept.

        Args:
            sync_id: Run to cancel.

        Returns:
            The cancelled run.

        Raises:
            SyncRunNotFoundError: If the run does not exist.
            InvalidSyncTransitionError: If the run is already terminal.
        """
        async with self._session_factory() as session:
            repo = SyncRunRepository(session)
            run = await repo.get_by_sync_id(sync_id)
            if run is None:
                raise SyncRunNotFoundError(f"Sync run {sync_id} not found", sync_id)
            if not await repo.transition(
                sync_id, list(ACTIVE_SYNC_STATUSES), SyncRunStatus.CANCELLED
            ):
                raise InvalidSyncTransitionError(
                    f"Sync run {sync_id} is already {run.status}", sync_id
                )
            cancelled = await repo.get_by_sync_id(sync_id)
        if cancelled is None:
            raise SyncRunNotFoundError(f"Sync run {sync_id} not found", sync_id)
        await logger.ainfo("sync_run_cancelled", sync_id=str(sync_id))
        return cancelled

    async def get_sync_progress(self, sync_id: UUID) -> SyncProgressInfo | None:
        """Get a run's progress, None if absent or past retention."""
        async with self._session_factory() as session:
            run = await SyncRunRepository(session).get_by_sync_id(
                sync_id, self._retention_cutoff()
            )
        return SyncProgressInfo.model_validate(run) if run is not None else None

    async def get_active_syncs(self, user_id: UUID) -> list[SyncProgressInfo]:
        """List a user's pending and syncing runs."""
        async with self._session_factory() as session:
            runs = await SyncRunRepository(session).list_active(user_id)
        return [SyncProgressInfo.model_validate(run) for run in runs]

    async def get_recent_syncs(self, user_id: UUID, limit: int = 10) -> list[SyncProgressInfo]:
        """List a user's most recent runs within retention, newest first."""
        async with self._session_factory() as session:
            runs = await SyncRunRepository(session).list_recent(
                user_id, limit, self._retention_cutoff()
            )
        return [SyncProgressInfo.model_validate(run) for run in runs]

    async def purge_expired(self) -> int:
        """Delete terminal runs past retention.

        Returns:
            Number of runs deleted.
        """
        async with self._session_factory() as session:
            deleted = await SyncRunRepository(session).delete_terminal_before(
                self._retention_cutoff()
            )
        if deleted:
            await logger.ainfo("sync_runs_purged", count=deleted)
        return deleted

    async def fail_orphaned_runs(self, reason: str = "Interrupted by process restart") -> int:
        """Fail every active run; used at startup before any sync is launched.

        Returns:
            Number of runs failed.
        """
        async with self._session_factory() as session:
            runs = await SyncRunRepository(session).list_all_active()
        failed = 0
        for run in runs:
            if await self.complete_sync(run.sync_id, success=False, error=reason):
                failed += 1
        if failed:
            await logger.awarning("orphaned_sync_runs_failed", count=failed)
        return failed
