"""Per-user automation settings model."""

from __future__ import annotations

import uuid
from datetime import datetime
from zoneinfo import ZoneInfo

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from commhub.models.base import Base, utcnow


class AutomationSettings(Base):
    """Thresholds and guards for automated delete and reply."""

    __tablename__ = "automation_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, unique=True, nullable=False)
    auto_delete_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    auto_reply_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    spam_threshold: Mapped[int] = mapped_column(Integer, default=80, nullable=False)
    reply_confidence_threshold: Mapped[int] = mapped_column(Integer, default=85, nullable=False)
    sender_allowlist: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    sender_denylist: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    business_hours_only: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    business_hours_start: Mapped[int] = mapped_column(Integer, default=9, nullable=False)
    business_hours_end: Mapped[int] = mapped_column(Integer, default=17, nullable=False)
    timezone: Mapped[str] = mapped_column(String, default="UTC", nullable=False)
    max_replies_per_day: Mapped[int] = mapped_column(Integer, default=50, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    def is_denylisted(self, sender: str) -> bool:
        """Check sender against the denylist (case-insensitive substring)."""
        sender_lower = sender.lower()
        return any(entry.lower() in sender_lower for entry in self.sender_denylist or [])

    def is_allowed_sender(self, sender: str) -> bool:
        """Check sender against deny and allow lists.

        An empty allowlist allows every sender not on the denylist.
        """
        if self.is_denylisted(sender):
            return False
        allowlist = self.sender_allowlist or []
        if not allowlist:
            return True
        sender_lower = sender.lower()
        return any(entry.lower() in sender_lower for entry in allowlist)

    def is_business_hours(self, now: datetime) -> bool:
        """Check if ``now`` falls on a weekday inside the configured hours."""
        local = now.astimezone(ZoneInfo(self.timezone))
        if local.weekday() >= 5:
            return False
        return self.business_hours_start <= local.hour < self.business_hours_end

    def local_day_start(self, now: datetime) -> datetime:
        """Midnight of the user's local day containing ``now``."""
        local = now.astimezone(ZoneInfo(self.timezone))
        return local.replace(hour=0, minute=0, second=0, microsecond=0)

    def __repr__(self) -> str:
        """Return string representation."""
        return f"AutomationSettings(user_id={self.user_id})"
