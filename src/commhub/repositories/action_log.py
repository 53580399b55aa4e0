"""Automated action log repository."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from commhub.models.action_log import ActionOutcome, AutomatedAction, AutomatedActionLog


class ActionLogRepository:
    """Append-only access to automated action logs."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async SQLAlchemy session.
        """
        self.session = session

    async def append(self, entry: AutomatedActionLog) -> AutomatedActionLog:
        """Append a log entry.

        Args:
            entry: Entry to insert.

        Returns:
            Inserted entry.
        """
        self.session.add(entry)
        await self.session.commit()
        await self.session.refresh(entry)
        return entry

    async def list_for_user(
        self,
        user_id: UUID,
        actions: list[AutomatedAction],
        limit: int = 50,
    ) -> list[AutomatedActionLog]:
        """List a user's log entries for the given actions, newest first.

        Args:
            user_id: Owning user.
            actions: Actions to include.
            limit: Maximum entries.

        Returns:
            Log entries ordered by creation time descending.
        """
        result = await self.session.execute(
            select(AutomatedActionLog)
            .where(
                AutomatedActionLog.user_id == user_id,
                AutomatedActionLog.action.in_([a.value for a in actions]),
            )
            .order_by(AutomatedActionLog.created_at.desc(), AutomatedActionLog.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def count_since(
        self,
        user_id: UUID,
        action: AutomatedAction,
        since: datetime,
        outcome: ActionOutcome = ActionOutcome.SUCCESS,
    ) -> int:
        """Count a user's entries of one action and outcome since a time.

        Args:
            user_id: Owning user.
            action: Action to count.
            since: Inclusive lower bound on creation time.
            outcome: Outcome to count.

        Returns:
            Number of matching entries.
        """
        count = await self.session.scalar(
            select(func.count()).where(
                AutomatedActionLog.user_id == user_id,
                AutomatedActionLog.action == action.value,
                AutomatedActionLog.outcome == outcome.value,
                AutomatedActionLog.created_at >= since,
            )
        )
        return count or 0
