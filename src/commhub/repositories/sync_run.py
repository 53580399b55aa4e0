"""Sync run repository for database operations."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import ColumnElement, delete, or_, select, true, update
from sqlalchemy.ext.asyncio import AsyncSession

from commhub.models.base import utcnow
from commhub.models.sync_run import (
    ACTIVE_SYNC_STATUSES,
    TERMINAL_SYNC_STATUSES,
    SyncRun,
    SyncRunStatus,
    SyncType,
)


def _visible(retention_cutoff: datetime | None) -> ColumnElement[bool]:
    """Filter hiding terminal runs completed before the retention cutoff."""
    if retention_cutoff is None:
        return true()
    return or_(SyncRun.completed_at.is_(None), SyncRun.completed_at >= retention_cutoff)


class SyncRunRepository:
    """Repository for sync run database operations."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async SQLAlchemy session.
        """
        self.session = session

    async def create(
        self,
        *,
        account_id: UUID,
        user_id: UUID,
        sync_type: SyncType,
        batch_size: int,
    ) -> SyncRun:
        """Create a pending sync run.

        Args:
            account_id: Account being synced.
            user_id: Owning user.
            sync_type: Kind of sync pass.
            batch_size: Messages per batch.

        Returns:
            Created sync run.
        """
        run = SyncRun(
            account_id=account_id,
            user_id=user_id,
            sync_type=sync_type.value,
            batch_size=batch_size,
            status=SyncRunStatus.PENDING.value,
            errors=[],
        )
        self.session.add(run)
        await self.session.commit()
        await self.session.refresh(run)
        return run

    async def get_by_sync_id(
        self, sync_id: UUID, retention_cutoff: datetime | None = None
    ) -> SyncRun | None:
        """Get sync run by its public ID.

        Args:
            sync_id: Sync run UUID.
            retention_cutoff: Hide terminal runs completed before this time.

        Returns:
            Sync run if found and visible, None otherwise.
        """
        result = await self.session.execute(
            select(SyncRun).where(SyncRun.sync_id == sync_id, _visible(retention_cutoff))
        )
        return result.scalar_one_or_none()

    async def get_active_for_account(self, account_id: UUID) -> SyncRun | None:
        """Get the pending or syncing run of an account, if any."""
        result = await self.session.execute(
            select(SyncRun)
            .where(
                SyncRun.account_id == account_id,
                SyncRun.status.in_(ACTIVE_SYNC_STATUSES),
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def transition(
        self,
        sync_id: UUID,
        from_statuses: Sequence[str],
        to_status: SyncRunStatus,
        **values: Any,
    ) -> bool:
        """Move a run to ``to_status`` only if it is in one of ``from_statuses``.

        Args:
            sync_id: Sync run UUID.
            from_statuses: Statuses the run must currently hold.
            to_status: Target status.
            **values: Extra columns to set in the same statement.

        Returns:
            True if the transition happened.
        """
        now = utcnow()
        if to_status.value in TERMINAL_SYNC_STATUSES:
            values.setdefault("completed_at", now)
            values.setdefault("estimated_time_remaining_ms", None)
        result = await self.session.execute(
            update(SyncRun)
            .where(SyncRun.sync_id == sync_id, SyncRun.status.in_(list(from_statuses)))
            .values(status=to_status.value, updated_at=now, **values)
        )
        await self.session.commit()
        return result.rowcount == 1

    async def update_active(self, sync_id: UUID, **values: Any) -> bool:
        """Update columns of a run that is still active.

        Returns:
            True if the run was active and updated.
        """
        result = await self.session.execute(
            update(SyncRun)
            .where(SyncRun.sync_id == sync_id, SyncRun.status.in_(ACTIVE_SYNC_STATUSES))
            .values(updated_at=utcnow(), **values)
        )
        await self.session.commit()
        return result.rowcount == 1

    async def list_active(self, user_id: UUID) -> list[SyncRun]:
        """List a user's pending and syncing runs, newest first."""
        result = await self.session.execute(
            select(SyncRun)
            .where(SyncRun.user_id == user_id, SyncRun.status.in_(ACTIVE_SYNC_STATUSES))
            .order_by(SyncRun.started_at.desc(), SyncRun.id.desc())
        )
        return list(result.scalars().all())

    async def list_all_active(self) -> list[SyncRun]:
        """List every pending and syncing run."""
        result = await self.session.execute(
            select(SyncRun).where(SyncRun.status.in_(ACTIVE_SYNC_STATUSES))
        )
        return list(result.scalars().all())

    async def list_recent(
        self, user_id: UUID, limit: int, retention_cutoff: datetime | None = None
    ) -> list[SyncRun]:
        """List a user's most recent runs, newest first.

        Args:
            user_id: Owning user.
            limit: Maximum runs to return.
            retention_cutoff: Hide terminal runs completed before this time.

        Returns:
            Sync runs ordered by start time descending.
        """
        result = await self.session.execute(
            select(SyncRun)
            .where(SyncRun.user_id == user_id, _visible(retention_cutoff))
            .order_by(SyncRun.started_at.desc(), SyncRun.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def delete_terminal_before(self, cutoff: datetime) -> int:
        """Delete terminal runs completed before ``cutoff``.

        Returns:
            Number of runs deleted.
        """
        result = await self.session.execute(
            delete(SyncRun).where(
                SyncRun.status.in_(TERMINAL_SYNC_STATUSES),
                SyncRun.completed_at.is_not(None),
                SyncRun.completed_at < cutoff,
            )
        )
        await self.session.commit()
        return result.rowcount or 0
