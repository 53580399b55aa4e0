"""Offline operation Pydantic schemas.

Payloads are a discriminated union keyed by ``operation_type`` so that a
``categorize`` without a category, or a ``send_reply`` without a body, is
rejected before anything reaches the queue table.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class MarkReadPayload(BaseModel):
    operation_type: Literal["mark_read"] = "mark_read"


class MarkUnreadPayload(BaseModel):
    operation_type: Literal["mark_unread"] = "mark_unread"


class ArchivePayload(BaseModel):
    operation_type: Literal["archive"] = "archive"


class UnarchivePayload(BaseModel):
    operation_type: Literal["unarchive"] = "unarchive"


class DeletePayload(BaseModel):
    operation_type: Literal["delete"] = "delete"


class CategorizePayload(BaseModel):
    operation_type: Literal["categorize"] = "categorize"
    category_id: str = Field(min_length=1)


class SendReplyPayload(BaseModel):
    operation_type: Literal["send_reply"] = "send_reply"
    body: str = Field(min_length=1)


OperationPayload = Annotated[
    MarkReadPayload
    | MarkUnreadPayload
    | ArchivePayload
    | UnarchivePayload
    | DeletePayload
    | CategorizePayload
    | SendReplyPayload,
    Field(discriminator="operation_type"),
]

operation_payload_adapter: TypeAdapter[OperationPayload] = TypeAdapter(OperationPayload)


def parse_payload(operation_type: str, payload: dict[str, Any] | None) -> OperationPayload:
    """Validate a raw payload against its operation type.

    Args:
        operation_type: Operation type string.
        payload: Raw payload dict (may omit the discriminator).

    Returns:
        Typed payload model.

    Raises:
        pydantic.ValidationError: If the type is unknown or the payload
            does not match it.
    """
    data = dict(payload or {})
    data["operation_type"] = operation_type
    return operation_payload_adapter.validate_python(data)


class QueueOperationCreate(BaseModel):
    """Schema for enqueuing an operation."""

    user_id: UUID
    operation_type: str
    resource_type: str
    resource_id: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    priority: int = 5
    client_id: str | None = None
    client_timestamp: datetime | None = None


class QueuedOperationResponse(BaseModel):
    """Schema for a queued operation."""

    id: int
    user_id: UUID
    operation_type: str
    resource_type: str
    resource_id: str | None
    payload: dict[str, Any]
    status: str
    priority: int
    attempt_count: int
    max_attempts: int
    failure_kind: str | None
    last_error: str | None
    client_id: str | None
    client_timestamp: datetime | None
    created_at: datetime
    processed_at: datetime | None

    model_config = ConfigDict(from_attributes=True)


class QueueStats(BaseModel):
    """Per-status operation counts for one user."""

    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    stale: int = 0
    total: int = 0


class QueueProcessResult(BaseModel):
    """Outcome of draining a user's queue."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    stale: int = 0
    skipped: int = 0
