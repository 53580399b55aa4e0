"""Repository layer for database operations."""

from commhub.repositories.account import AccountRepository
from commhub.repositories.action_log import ActionLogRepository
from commhub.repositories.automation_settings import AutomationSettingsRepository
from commhub.repositories.message import MessageRepository
from commhub.repositories.offline_operation import OfflineOperationRepository
from commhub.repositories.sync_run import SyncRunRepository

__all__ = [
    "AccountRepository",
    "ActionLogRepository",
    "AutomationSettingsRepository",
    "MessageRepository",
    "OfflineOperationRepository",
    "SyncRunRepository",
]
