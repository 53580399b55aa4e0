"""Pydantic schemas for commhub."""

from commhub.schemas.automation import (
    ActionLogResponse,
    AutomationSettingsUpdate,
    ProcessingStats,
)
from commhub.schemas.offline import (
    OperationPayload,
    QueuedOperationResponse,
    QueueOperationCreate,
    QueueProcessResult,
    QueueStats,
    parse_payload,
)
from commhub.schemas.sync import SyncProgressInfo, SyncProgressUpdate, SyncRunErrorEntry

__all__ = [
    "ActionLogResponse",
    "AutomationSettingsUpdate",
    "OperationPayload",
    "ProcessingStats",
    "QueueOperationCreate",
    "QueueProcessResult",
    "QueueStats",
    "QueuedOperationResponse",
    "SyncProgressInfo",
    "SyncProgressUpdate",
    "SyncRunErrorEntry",
    "parse_payload",
]
