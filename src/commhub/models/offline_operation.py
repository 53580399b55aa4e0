"""Offline operation model."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, DateTime, Index, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from commhub.models.base import Base, utcnow


class OperationType(str, Enum):
    """Mutations a client may stage while offline."""

    MARK_READ = "mark_read"
    MARK_UNREAD = "mark_unread"
    ARCHIVE = "archive"
    UNARCHIVE = "unarchive"
    CATEGORIZE = "categorize"
    SEND_REPLY = "send_reply"
    DELETE = "delete"


class ResourceType(str, Enum):
    """Kinds of resources an operation can target."""

    MESSAGE = "message"
    CATEGORY = "category"
    ACCOUNT = "account"


class OperationStatus(str, Enum):
    """Lifecycle states of a queued operation."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class FailureKind(str, Enum):
    """Why a failed operation failed."""

    TRANSIENT = "transient"  # retry later
    STALE_TARGET = "stale_target"  # target changed server-side or is gone


class QueuedOperation(Base):
    """Client-originated mutation staged for ordered application."""

    __tablename__ = "offline_operations"
    __table_args__ = (
        Index("ix_offline_operations_user_status_order", "user_id", "status", "priority"),
        Index("ix_offline_operations_user_client", "user_id", "client_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    operation_type: Mapped[str] = mapped_column(String, nullable=False)
    resource_type: Mapped[str] = mapped_column(String, nullable=False)
    resource_id: Mapped[str | None] = mapped_column(String, nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)

    status: Mapped[str] = mapped_column(
        String, default=OperationStatus.PENDING.value, nullable=False
    )
    priority: Mapped[int] = mapped_column(Integer, default=5, nullable=False)
    attempt_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_attempts: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    failure_kind: Mapped[str | None] = mapped_column(String, nullable=True)
    last_error: Mapped[str | None] = mapped_column(String, nullable=True)

    client_id: Mapped[str | None] = mapped_column(String, nullable=True)
    client_timestamp: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_completed(self) -> bool:
        """Check if the operation was applied."""
        return self.status == OperationStatus.COMPLETED.value

    @property
    def is_stale(self) -> bool:
        """Check if the operation failed on a stale target."""
        return self.failure_kind == FailureKind.STALE_TARGET.value

    @property
    def can_retry(self) -> bool:
        """Check if a failed operation may be attempted again."""
        return (
            self.status == OperationStatus.FAILED.value
            and self.failure_kind == FailureKind.TRANSIENT.value
            and self.attempt_count < self.max_attempts
        )

    @property
    def resource_key(self) -> tuple[str, str]:
        """Key grouping operations that must apply in order."""
        if self.resource_id is None:
            return (self.resource_type, f"op-{self.id}")
        return (self.resource_type, self.resource_id)

    def __repr__(self) -> str:
        """Return string representation."""
        return (
            f"QueuedOperation(id={self.id}, type={self.operation_type!r}, "
            f"status={self.status!r})"
        )
