"""Canonical message mirror models."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from commhub.models.base import Base, utcnow


class AnalysisStatus(str, Enum):
    """Progress of the automated analysis of a message."""

    ANALYZING = "analyzing"
    ANALYZED = "analyzed"
    SKIPPED = "skipped"


class Message(Base):
    """Locally mirrored message.

    Local state flags (read, archive, category, trash) are owned by the
    mirror once a message exists; sync never overwrites them. Changes made
    by server-side actors stamp ``server_modified_at`` so queued client
    operations can detect that they are stale.
    """

    __tablename__ = "messages"
    __table_args__ = (UniqueConstraint("account_id", "external_id", name="uq_messages_external"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    account_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    external_id: Mapped[str] = mapped_column(String, nullable=False)
    thread_id: Mapped[str | None] = mapped_column(String, nullable=True)
    sender: Mapped[str] = mapped_column(String, nullable=False, default="")
    recipient: Mapped[str | None] = mapped_column(String, nullable=True)
    subject: Mapped[str | None] = mapped_column(String, nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    # Local state
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    category_id: Mapped[str | None] = mapped_column(String, nullable=True)
    is_trashed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    trashed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    auto_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Automated analysis
    analysis_status: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    analysis_claimed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    analysis_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    analyzed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    spam_probability: Mapped[float | None] = mapped_column(Float, nullable=True)
    reply_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    priority_score: Mapped[float | None] = mapped_column(Float, nullable=True)

    server_modified_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    @property
    def is_archived(self) -> bool:
        """Check if the message is archived."""
        return self.archived_at is not None

    @property
    def is_analyzed(self) -> bool:
        """Check if an analysis result is stored."""
        return self.analysis_status == AnalysisStatus.ANALYZED.value

    @property
    def is_restorable(self) -> bool:
        """Check if the message sits in trash because of an auto-delete."""
        return self.is_trashed and self.auto_deleted

    def __repr__(self) -> str:
        """Return string representation."""
        return f"Message(id={self.id}, subject={self.subject!r})"


class SentReply(Base):
    """Outbox entry guarding replies against duplicate sends."""

    __tablename__ = "sent_replies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    dedup_key: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    message_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    provider_message_id: Mapped[str | None] = mapped_column(String, nullable=True)
    sent_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
