"""Connected account model."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, DateTime, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from commhub.models.base import Base, utcnow


class AccountSyncStatus(str, Enum):
    """Sync status of a connected account."""

    ACTIVE = "active"
    PAUSED = "paused"
    SYNCING = "syncing"
    ERROR = "error"


class ConnectionHealth(str, Enum):
    """Connection health of a connected account."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    ERROR = "error"


class ConnectedAccount(Base):
    """External mail account mirrored by the sync subsystem."""

    __tablename__ = "connected_accounts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    protocol: Mapped[str] = mapped_column(String, nullable=False)
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    display_name: Mapped[str | None] = mapped_column(String, nullable=True)

    # Sync settings
    sync_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    sync_frequency_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    sync_since_cursor: Mapped[str | None] = mapped_column(String, nullable=True)

    # Health
    sync_status: Mapped[str] = mapped_column(
        String, default=AccountSyncStatus.ACTIVE.value, nullable=False, index=True
    )
    connection_health: Mapped[str] = mapped_column(
        String, default=ConnectionHealth.HEALTHY.value, nullable=False
    )
    last_error: Mapped[str | None] = mapped_column(String, nullable=True)
    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    consecutive_failures: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    needs_reauth: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    @property
    def is_syncing(self) -> bool:
        """Check if a sync is currently running for this account."""
        return self.sync_status == AccountSyncStatus.SYNCING.value

    @property
    def is_schedulable(self) -> bool:
        """Check if the scheduler should arm a timer for this account."""
        return self.sync_enabled and self.sync_status in (
            AccountSyncStatus.ACTIVE.value,
            AccountSyncStatus.PAUSED.value,
        )

    def __repr__(self) -> str:
        """Return string representation."""
        return (
            f"ConnectedAccount(id={self.id}, protocol={self.protocol!r}, "
            f"status={self.sync_status!r})"
        )
