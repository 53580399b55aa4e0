"""SQLAlchemy models for commhub."""

from commhub.models.account import AccountSyncStatus, ConnectedAccount, ConnectionHealth
from commhub.models.action_log import ActionOutcome, AutomatedAction, AutomatedActionLog
from commhub.models.automation_settings import AutomationSettings
from commhub.models.base import Base
from commhub.models.message import AnalysisStatus, Message, SentReply
from commhub.models.offline_operation import (
    FailureKind,
    OperationStatus,
    OperationType,
    QueuedOperation,
    ResourceType,
)
from commhub.models.sync_run import SyncRun, SyncRunStatus, SyncType

__all__ = [
    "AccountSyncStatus",
    "ActionOutcome",
    "AnalysisStatus",
    "AutomatedAction",
    "AutomatedActionLog",
    "AutomationSettings",
    "Base",
    "ConnectedAccount",
    "ConnectionHealth",
    "FailureKind",
    "Message",
    "OperationStatus",
    "OperationType",
    "QueuedOperation",
    "ResourceType",
    "SentReply",
    "SyncRun",
    "SyncRunStatus",
    "SyncType",
]
