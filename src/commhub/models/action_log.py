"""Automated action log model."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, Float, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from commhub.models.base import Base, utcnow


class AutomatedAction(str, Enum):
    """Actions taken without human confirmation."""

    TRASHED = "trashed"
    RESTORED = "restored"
    REPLIED = "replied"


class ActionOutcome(str, Enum):
    """Result of an automated action."""

    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


class AutomatedActionLog(Base):
    """Append-only audit entry for an automated delete, restore or reply."""

    __tablename__ = "automated_action_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    message_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    action: Mapped[str] = mapped_column(String, nullable=False, index=True)
    spam_probability: Mapped[float | None] = mapped_column(Float, nullable=True)
    confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    threshold_used: Mapped[float | None] = mapped_column(Float, nullable=True)
    outcome: Mapped[str] = mapped_column(String, nullable=False)
    reason: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False, index=True
    )

    def __repr__(self) -> str:
        """Return string representation."""
        return (
            f"AutomatedActionLog(id={self.id}, action={self.action!r}, "
            f"outcome={self.outcome!r})"
        )
