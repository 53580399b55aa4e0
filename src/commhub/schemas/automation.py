"""Automated processing Pydantic schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Self
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class ProcessingStats(BaseModel):
    """Counters for one automated processing sweep."""

    users_processed: int = 0
    messages_analyzed: int = 0
    spam_trashed: int = 0
    replies_sent: int = 0
    errors: list[str] = Field(default_factory=list)

    def merge(self, other: ProcessingStats) -> None:
        """Add another sweep's counters into this one."""
        self.users_processed += other.users_processed
        self.messages_analyzed += other.messages_analyzed
        self.spam_trashed += other.spam_trashed
        self.replies_sent += other.replies_sent
        self.errors.extend(other.errors)


class ActionLogResponse(BaseModel):
    """Schema for an automated action log entry."""

    id: int
    message_id: UUID
    user_id: UUID
    action: str
    spam_probability: float | None
    confidence: float | None
    threshold_used: float | None
    outcome: str
    reason: str | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AutomationSettingsUpdate(BaseModel):
    """Schema for updating automation settings."""

    auto_delete_enabled: bool | None = None
    auto_reply_enabled: bool | None = None
    spam_threshold: int | None = Field(default=None, ge=0, le=100)
    reply_confidence_threshold: int | None = Field(default=None, ge=0, le=100)
    sender_allowlist: list[str] | None = None
    sender_denylist: list[str] | None = None
    business_hours_only: bool | None = None
    business_hours_start: int | None = Field(default=None, ge=0, le=23)
    business_hours_end: int | None = Field(default=None, ge=1, le=24)
    timezone: str | None = None
    max_replies_per_day: int | None = Field(default=None, ge=0)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str | None) -> str | None:
        """Validate the timezone is a known IANA key."""
        if v is None:
            return v
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            msg = f"Unknown timezone '{v}'"
            raise ValueError(msg) from e
        return v

    @model_validator(mode="after")
    def validate_business_hours(self) -> Self:
        """Validate the business hours window when both ends are given."""
        start, end = self.business_hours_start, self.business_hours_end
        if start is not None and end is not None and start >= end:
            msg = "business_hours_start must be before business_hours_end"
            raise ValueError(msg)
        return self
