"""Sync run model."""

from __future__ import annotations

import math
import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, DateTime, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from commhub.models.base import Base, utcnow


class SyncRunStatus(str, Enum):
    """Lifecycle states of a sync run."""

    PENDING = "pending"
    SYNCING = "syncing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class SyncType(str, Enum):
    """Kind of sync pass."""

    INITIAL = "initial"
    INCREMENTAL = "incremental"
    FULL = "full"


ACTIVE_SYNC_STATUSES = (SyncRunStatus.PENDING.value, SyncRunStatus.SYNCING.value)
TERMINAL_SYNC_STATUSES = (
    SyncRunStatus.COMPLETED.value,
    SyncRunStatus.FAILED.value,
    SyncRunStatus.CANCELLED.value,
)


def percentage(part: int, whole: int) -> int:
    """Percentage rounded half up, 0 when the whole is 0."""
    if whole <= 0:
        return 0
    return math.floor(part * 100 / whole + 0.5)


class SyncRun(Base):
    """One synchronization pass for one account."""

    __tablename__ = "sync_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    sync_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, unique=True, nullable=False, default=uuid.uuid4, index=True
    )
    account_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    status: Mapped[str] = mapped_column(
        String, default=SyncRunStatus.PENDING.value, nullable=False, index=True
    )
    sync_type: Mapped[str] = mapped_column(
        String, default=SyncType.INCREMENTAL.value, nullable=False
    )

    total_messages: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    processed_messages: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    stored_messages: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed_messages: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    current_batch: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_batches: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    batch_size: Mapped[int] = mapped_column(Integer, default=50, nullable=False)

    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )
    estimated_time_remaining_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    errors: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)

    @property
    def is_active(self) -> bool:
        """Check if the run is pending or syncing."""
        return self.status in ACTIVE_SYNC_STATUSES

    @property
    def is_terminal(self) -> bool:
        """Check if the run reached a terminal status."""
        return self.status in TERMINAL_SYNC_STATUSES

    @property
    def progress_percentage(self) -> int:
        """Processed share of total, 0 when total is 0."""
        return percentage(self.processed_messages, self.total_messages)

    @property
    def success_rate(self) -> int:
        """Stored share of processed, 0 when nothing was processed."""
        return percentage(self.stored_messages, self.processed_messages)

    def __repr__(self) -> str:
        """Return string representation."""
        return f"SyncRun(sync_id={self.sync_id}, status={self.status!r})"
