"""Sync run Pydantic schemas."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class SyncRunErrorEntry(BaseModel):
    """Single error recorded during a sync run."""

    message_id: str | None = None
    error: str
    timestamp: datetime


class SyncProgressUpdate(BaseModel):
    """Partial counters reported by a running sync."""

    total_messages: int | None = None
    processed_messages: int | None = None
    stored_messages: int | None = None
    failed_messages: int | None = None
    current_batch: int | None = None
    total_batches: int | None = None


class SyncProgressInfo(BaseModel):
    """Schema for a sync run as seen by callers."""

    sync_id: UUID
    account_id: UUID
    user_id: UUID
    status: str
    sync_type: str
    total_messages: int
    processed_messages: int
    stored_messages: int
    failed_messages: int
    current_batch: int
    total_batches: int
    batch_size: int
    started_at: datetime
    completed_at: datetime | None
    estimated_time_remaining_ms: int | None
    errors: list[SyncRunErrorEntry]
    progress_percentage: int
    success_rate: int

    model_config = ConfigDict(from_attributes=True)
