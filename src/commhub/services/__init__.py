"""Service layer for background sync, offline replay and automation."""

from commhub.services.automation import AutomatedProcessingPipeline
from commhub.services.offline_queue import (
    InvalidOperationError,
    OfflineQueueError,
    OfflineQueueManager,
    OperationExecutionError,
    OperationNotFoundError,
    StaleTargetError,
)
from commhub.services.reply_sender import ReplySender, ReplySendError
from commhub.services.sync_progress import (
    InvalidSyncTransitionError,
    SyncAlreadyActiveError,
    SyncProgressError,
    SyncProgressTracker,
    SyncRunNotFoundError,
)
from commhub.services.sync_runner import SyncOutcome, SyncRunner
from commhub.services.sync_scheduler import AccountSyncScheduler, SchedulerConfig

__all__ = [
    "AccountSyncScheduler",
    "AutomatedProcessingPipeline",
    "InvalidOperationError",
    "InvalidSyncTransitionError",
    "OfflineQueueError",
    "OfflineQueueManager",
    "OperationExecutionError",
    "OperationNotFoundError",
    "ReplySendError",
    "ReplySender",
    "SchedulerConfig",
    "StaleTargetError",
    "SyncAlreadyActiveError",
    "SyncOutcome",
    "SyncProgressError",
    "SyncProgressTracker",
    "SyncRunNotFoundError",
    "SyncRunner",
]
