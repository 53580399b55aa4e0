"""Offline operation repository for database operations."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import ColumnElement, and_, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from commhub.models.base import utcnow
from commhub.models.offline_operation import FailureKind, OperationStatus, QueuedOperation


def _retryable() -> ColumnElement[bool]:
    return and_(
        QueuedOperation.status == OperationStatus.FAILED.value,
        QueuedOperation.failure_kind == FailureKind.TRANSIENT.value,
        QueuedOperation.attempt_count < QueuedOperation.max_attempts,
    )


class OfflineOperationRepository:
    """Repository for queued offline operations."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async SQLAlchemy session.
        """
        self.session = session

    async def create(self, operation: QueuedOperation) -> QueuedOperation:
        """Persist a new operation.

        Args:
            operation: Operation to insert.

        Returns:
            Operation with its assigned ID.
        """
        self.session.add(operation)
        await self.session.commit()
        await self.session.refresh(operation)
        return operation

    async def get_by_id(
        self, operation_id: int, user_id: UUID | None = None
    ) -> QueuedOperation | None:
        """Get operation by ID.

        Args:
            operation_id: Operation ID.
            user_id: Owning user; when given, other users' operations are not found.

        Returns:
            Operation if found, None otherwise.
        """
        query = select(QueuedOperation).where(QueuedOperation.id == operation_id)
        if user_id is not None:
            query = query.where(QueuedOperation.user_id == user_id)
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_by_client_id(self, user_id: UUID, client_id: str) -> QueuedOperation | None:
        """Get a user's operation by client correlation ID."""
        result = await self.session.execute(
            select(QueuedOperation)
            .where(QueuedOperation.user_id == user_id, QueuedOperation.client_id == client_id)
            .order_by(QueuedOperation.id)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_pending(self, user_id: UUID) -> list[QueuedOperation]:
        """List pending and retryable operations in application order.

        Order is priority descending, then creation time and ID ascending.

        Args:
            user_id: Owning user.

        Returns:
            Operations awaiting application.
        """
        result = await self.session.execute(
            select(QueuedOperation)
            .where(
                QueuedOperation.user_id == user_id,
                or_(QueuedOperation.status == OperationStatus.PENDING.value, _retryable()),
            )
            .order_by(
                QueuedOperation.priority.desc(),
                QueuedOperation.created_at.asc(),
                QueuedOperation.id.asc(),
            )
        )
        return list(result.scalars().all())

    async def claim(self, operation: QueuedOperation) -> bool:
        """Move an observed operation to ``processing`` and count the attempt.

        The update only matches if status and attempt count are unchanged
        since ``operation`` was read.

        Args:
            operation: Operation as last read.

        Returns:
            True if this caller owns the attempt.
        """
        observed_status = operation.status
        observed_attempts = operation.attempt_count
        result = await self.session.execute(
            update(QueuedOperation)
            .where(
                QueuedOperation.id == operation.id,
                QueuedOperation.status == observed_status,
                QueuedOperation.attempt_count == observed_attempts,
                QueuedOperation.status.in_(
                    [OperationStatus.PENDING.value, OperationStatus.FAILED.value]
                ),
            )
            .values(
                status=OperationStatus.PROCESSING.value,
                attempt_count=observed_attempts + 1,
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        if result.rowcount != 1:
            return False
        operation.status = OperationStatus.PROCESSING.value
        operation.attempt_count = observed_attempts + 1
        return True

    async def mark_completed(self, operation_id: int) -> None:
        """Mark an operation applied."""
        await self.session.execute(
            update(QueuedOperation)
            .where(QueuedOperation.id == operation_id)
            .values(
                status=OperationStatus.COMPLETED.value,
                failure_kind=None,
                last_error=None,
                processed_at=utcnow(),
            )
        )
        await self.session.commit()

    async def mark_failed(self, operation_id: int, kind: FailureKind, error: str) -> None:
        """Mark an operation failed.

        Args:
            operation_id: Operation ID.
            kind: Failure classification.
            error: Error description.
        """
        await self.session.execute(
            update(QueuedOperation)
            .where(QueuedOperation.id == operation_id)
            .values(
                status=OperationStatus.FAILED.value,
                failure_kind=kind.value,
                last_error=error,
                processed_at=utcnow(),
            )
        )
        await self.session.commit()

    async def count_by_status(self, user_id: UUID) -> dict[str, int]:
        """Count a user's operations per status.

        Returns:
            Mapping of status value to count, plus ``stale``.
        """
        result = await self.session.execute(
            select(QueuedOperation.status, func.count())
            .where(QueuedOperation.user_id == user_id)
            .group_by(QueuedOperation.status)
        )
        counts = {status: count for status, count in result.all()}
        stale = await self.session.scalar(
            select(func.count()).where(
                QueuedOperation.user_id == user_id,
                QueuedOperation.status == OperationStatus.FAILED.value,
                QueuedOperation.failure_kind == FailureKind.STALE_TARGET.value,
            )
        )
        counts["stale"] = stale or 0
        return counts

    async def reset_retryable(self, user_id: UUID) -> int:
        """Return transient failures below the attempt cap to ``pending``.

        Returns:
            Number of operations reset.
        """
        result = await self.session.execute(
            update(QueuedOperation)
            .where(QueuedOperation.user_id == user_id, _retryable())
            .values(status=OperationStatus.PENDING.value, failure_kind=None)
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        return result.rowcount or 0

    async def reset_processing(self) -> int:
        """Return operations abandoned mid-attempt by a dead process to ``pending``.

        Returns:
            Number of operations reset.
        """
        result = await self.session.execute(
            update(QueuedOperation)
            .where(QueuedOperation.status == OperationStatus.PROCESSING.value)
            .values(status=OperationStatus.PENDING.value)
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        return result.rowcount or 0

    async def delete_completed(self, user_id: UUID) -> int:
        """Delete a user's completed operations.

        Returns:
            Number of operations deleted.
        """
        result = await self.session.execute(
            delete(QueuedOperation)
            .where(
                QueuedOperation.user_id == user_id,
                QueuedOperation.status == OperationStatus.COMPLETED.value,
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        return result.rowcount or 0
