"""Automated processing pipeline.

Periodically sweeps every user with a live account: each unanalyzed
message is claimed, scored by the AI decision service and then either
trashed as spam, answered automatically, or left alone. Every delete,
restore and reply is written to the action log.
"""

from __future__ import annotations

import asyncio
import contextlib
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any
from uuid import UUID

import structlog

from commhub.ai.base import AIDecisionError, decide
from commhub.models.action_log import ActionOutcome, AutomatedAction, AutomatedActionLog
from commhub.models.base import utcnow
from commhub.repositories.account import AccountRepository
from commhub.repositories.action_log import ActionLogRepository
from commhub.repositories.automation_settings import AutomationSettingsRepository
from commhub.repositories.message import MessageRepository
from commhub.schemas.automation import ActionLogResponse, ProcessingStats
from commhub.services.reply_sender import ReplySendError

if TYPE_CHECKING:
    from commhub.ai.base import AIDecisionService, ReplyDraft
    from commhub.core.database import SessionFactory
    from commhub.models.automation_settings import AutomationSettings
    from commhub.models.message import Message
    from commhub.services.reply_sender import ReplySender

logger = structlog.get_logger(__name__)

ALREADY_PROCESSING = "Processing already in progress"


class AutomatedProcessingPipeline:
    """AI triage of synced messages with auditable actions."""

    def __init__(
        self,
        session_factory: SessionFactory,
        ai_service: AIDecisionService,
        reply_sender: ReplySender,
        *,
        interval_seconds: float = 900.0,
        ai_timeout_seconds: float = 30.0,
        max_concurrent_users: int = 1,
        analysis_max_attempts: int = 3,
        claim_ttl: timedelta = timedelta(hours=1),
        trash_retention_days: int = 30,
    ) -> None:
        """Initialize pipeline.

        Args:
            session_factory: Factory for async sessions.
            ai_service: AI decision service.
            reply_sender: Sender for automatic replies.
            interval_seconds: Default interval between sweeps.
            ai_timeout_seconds: Deadline for one message's AI verdict.
            max_concurrent_users: Users processed at once.
            analysis_max_attempts: Failed analyses before a message is skipped.
            claim_ttl: Age after which an analysis claim may be taken over.
            trash_retention_days: Days a trashed message stays restorable before
                it is deleted for good.
        """
        self._session_factory = session_factory
        self._ai = ai_service
        self._reply_sender = reply_sender
        self.interval_seconds = interval_seconds
        self.ai_timeout_seconds = ai_timeout_seconds
        self.max_concurrent_users = max_concurrent_users
        self.analysis_max_attempts = analysis_max_attempts
        self.claim_ttl = claim_ttl
        self.trash_retention_days = trash_retention_days
        self._task: asyncio.Task[None] | None = None
        self._processing = False
        self.last_run_at: datetime | None = None
        self.last_stats: ProcessingStats | None = None

    @property
    def is_running(self) -> bool:
        """Check if the periodic sweep is scheduled."""
        return self._task is not None and not self._task.done()

    def start(self, interval_seconds: float | None = None) -> None:
        """Start periodic sweeps.

        Args:
            interval_seconds: Interval between sweeps, defaults to the configured one.
        """
        if self.is_running:
            logger.warning("automation_already_running")
            return
        if interval_seconds is not None:
            self.interval_seconds = interval_seconds
        self._task = asyncio.create_task(self._loop())
        logger.info("automation_started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        """Stop periodic sweeps; a sweep in progress is cancelled."""
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        await logger.ainfo("automation_stopped")

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.process_all_users()
            except Exception:
                await logger.aexception("automation_sweep_failed")
            try:
                await self.cleanup_old_trash()
            except Exception:
                await logger.aexception("automation_trash_cleanup_failed")

    async def process_all_users(self) -> ProcessingStats:
        """Run one sweep over every user with an active account.

        A call made while another sweep is running returns immediately
        with an error entry.

        Returns:
            Aggregated sweep statistics.
        """
        if self._processing:
            await logger.ainfo("automation_sweep_skipped", reason="already_processing")
            return ProcessingStats(errors=[ALREADY_PROCESSING])

        self._processing = True
        stats = ProcessingStats()
        try:
            async with self._session_factory() as session:
                user_ids = await AccountRepository(session).list_active_user_ids()
            await logger.ainfo("automation_sweep_started", users=len(user_ids))

            semaphore = asyncio.Semaphore(max(self.max_concurrent_users, 1))

            async def _run(user_id: UUID) -> None:
                async with semaphore:
                    try:
                        stats.merge(await self.process_user_messages(user_id))
                    except Exception as e:
                        await logger.aexception("automation_user_failed", user_id=str(user_id))
                        stats.errors.append(f"User {user_id}: {e}")

            await asyncio.gather(*(_run(user_id) for user_id in user_ids))
        finally:
            self._processing = False
            self.last_run_at = utcnow()
            self.last_stats = stats
        await logger.ainfo(
            "automation_sweep_completed",
            users_processed=stats.users_processed,
            messages_analyzed=stats.messages_analyzed,
            spam_trashed=stats.spam_trashed,
            replies_sent=stats.replies_sent,
            errors=len(stats.errors),
        )
        return stats

    async def process_user_messages(self, user_id: UUID) -> ProcessingStats:
        """Analyze and act on one user's unanalyzed messages.

        Args:
            user_id: User to process.

        Returns:
            Statistics for this user.
        """
        stats = ProcessingStats(users_processed=1)
        stale_before = utcnow() - self.claim_ttl
        async with self._session_factory() as session:
            settings = await AutomationSettingsRepository(session).get_or_default(user_id)
            messages = await MessageRepository(session).list_unanalyzed(user_id, stale_before)

        for message in messages:
            try:
                await self._process_message(message, settings, stale_before, stats)
            except Exception as e:
                await logger.aexception(
                    "automation_message_failed", user_id=str(user_id), message_id=str(message.id)
                )
                stats.errors.append(f"Message {message.id}: {e}")
        return stats

    async def _process_message(
        self,
        message: Message,
        settings: AutomationSettings,
        stale_before: datetime,
        stats: ProcessingStats,
    ) -> None:
        async with self._session_factory() as session:
            if not await MessageRepository(session).claim_for_analysis(message.id, stale_before):
                return

        try:
            decision = await decide(
                self._ai,
                message,
                timeout=self.ai_timeout_seconds,
                want_reply=settings.auto_reply_enabled,
            )
        except AIDecisionError as e:
            async with self._session_factory() as session:
                skipped = await MessageRepository(session).release_analysis(
                    message.id, self.analysis_max_attempts
                )
            await logger.awarning(
                "automation_ai_unavailable",
                message_id=str(message.id),
                error=str(e),
                timed_out=e.timed_out,
                skipped=skipped,
            )
            stats.errors.append(f"Message {message.id}: {e}")
            return

        async with self._session_factory() as session:
            await MessageRepository(session).save_analysis(
                message.id,
                spam_probability=decision.spam_probability,
                reply_confidence=decision.reply_confidence,
                priority_score=decision.priority_score,
            )
        stats.messages_analyzed += 1

        spam_percent = decision.spam_probability * 100
        if settings.auto_delete_enabled and spam_percent >= settings.spam_threshold:
            if await self._trash(message, settings, spam_percent):
                stats.spam_trashed += 1
            return

        draft = decision.reply
        if (
            settings.auto_reply_enabled
            and draft is not None
            and await self._should_reply(message, settings, draft)
        ):
            if await self._reply(message, settings, draft):
                stats.replies_sent += 1

    async def _trash(
        self, message: Message, settings: AutomationSettings, spam_percent: float
    ) -> bool:
        reason = f"Spam probability {spam_percent:.0f}% >= threshold {settings.spam_threshold}%"
        try:
            async with self._session_factory() as session:
                trashed = await MessageRepository(session).trash(
                    message.id, message.user_id, automated=True
                )
            error = None if trashed else "Message no longer exists"
        except Exception as e:
            trashed = False
            error = str(e)
            await logger.aexception("automation_trash_failed", message_id=str(message.id))

        await self._log(
            message,
            AutomatedAction.TRASHED,
            ActionOutcome.SUCCESS if trashed else ActionOutcome.FAILED,
            spam_probability=spam_percent,
            threshold_used=settings.spam_threshold,
            reason=reason if trashed else f"{reason}; {error}",
        )
        if trashed:
            await logger.ainfo(
                "automation_message_trashed",
                message_id=str(message.id),
                spam_probability=round(spam_percent, 1),
            )
        return trashed

    async def _should_reply(
        self, message: Message, settings: AutomationSettings, draft: ReplyDraft
    ) -> bool:
        log = logger.bind(message_id=str(message.id), user_id=str(message.user_id))
        if draft.confidence * 100 < settings.reply_confidence_threshold:
            return False
        if not settings.is_allowed_sender(message.sender):
            await log.adebug("automation_reply_sender_blocked", sender=message.sender)
            return False
        now = utcnow()
        if settings.business_hours_only and not settings.is_business_hours(now):
            await log.adebug("automation_reply_outside_business_hours")
            return False
        day_start = settings.local_day_start(now).astimezone(UTC)
        async with self._session_factory() as session:
            sent_today = await ActionLogRepository(session).count_since(
                message.user_id, AutomatedAction.REPLIED, day_start
            )
        if sent_today >= settings.max_replies_per_day:
            await log.ainfo(
                "automation_reply_daily_cap_reached", limit=settings.max_replies_per_day
            )
            return False
        return True

    async def _reply(
        self, message: Message, settings: AutomationSettings, draft: ReplyDraft
    ) -> bool:
        confidence = draft.confidence * 100
        try:
            sent = await self._reply_sender.send_reply(
                message, draft.text, dedup_key=f"auto-reply:{message.id}"
            )
        except ReplySendError as e:
            await self._log(
                message,
                AutomatedAction.REPLIED,
                ActionOutcome.FAILED,
                confidence=confidence,
                threshold_used=settings.reply_confidence_threshold,
                reason=str(e),
            )
            return False
        if not sent:
            return False
        await self._log(
            message,
            AutomatedAction.REPLIED,
            ActionOutcome.SUCCESS,
            confidence=confidence,
            threshold_used=settings.reply_confidence_threshold,
            reason=(
                f"Reply confidence {confidence:.0f}% >= "
                f"threshold {settings.reply_confidence_threshold}%"
            ),
        )
        await logger.ainfo("automation_reply_sent", message_id=str(message.id))
        return True

    async def _log(
        self,
        message: Message,
        action: AutomatedAction,
        outcome: ActionOutcome,
        **fields: Any,
    ) -> None:
        async with self._session_factory() as session:
            await ActionLogRepository(session).append(
                AutomatedActionLog(
                    message_id=message.id,
                    user_id=message.user_id,
                    action=action.value,
                    outcome=outcome.value,
                    **fields,
                )
            )

    async def restore_from_trash(self, message_id: UUID, user_id: UUID) -> bool:
        """Restore a message that automation trashed.

        Args:
            message_id: Message to restore.
            user_id: Owning user.

        Returns:
            True if restored; False if the message is missing, not owned by
            the user, was not trashed by automation, or is past the restore
            window.
        """
        window_start = self._trash_cutoff()
        async with self._session_factory() as session:
            store = MessageRepository(session)
            message = await store.get_by_id(message_id, user_id)
            if message is None or not message.is_restorable:
                return False
            if not await store.restore(message_id, user_id, trashed_since=window_start):
                await logger.ainfo(
                    "automation_restore_window_expired", message_id=str(message_id)
                )
                return False
        await self._log(
            message,
            AutomatedAction.RESTORED,
            ActionOutcome.SUCCESS,
            spam_probability=message.spam_probability * 100
            if message.spam_probability is not None
            else None,
            reason="Restored from trash by user",
        )
        await logger.ainfo("automation_message_restored", message_id=str(message_id))
        return True

    def _trash_cutoff(self) -> datetime:
        return utcnow() - timedelta(days=self.trash_retention_days)

    async def cleanup_old_trash(self) -> int:
        """Permanently delete messages trashed longer ago than the retention window.

        Returns:
            Number of messages deleted.
        """
        async with self._session_factory() as session:
            deleted = await MessageRepository(session).delete_trashed_before(
                self._trash_cutoff()
            )
        if deleted:
            await logger.ainfo(
                "automation_trash_cleaned",
                deleted=deleted,
                retention_days=self.trash_retention_days,
            )
        return deleted

    async def get_auto_delete_logs(
        self, user_id: UUID, limit: int = 50
    ) -> list[ActionLogResponse]:
        """List a user's trash and restore log entries, newest first."""
        async with self._session_factory() as session:
            entries = await ActionLogRepository(session).list_for_user(
                user_id, [AutomatedAction.TRASHED, AutomatedAction.RESTORED], limit
            )
        return [ActionLogResponse.model_validate(entry) for entry in entries]

    async def get_auto_reply_logs(self, user_id: UUID, limit: int = 50) -> list[ActionLogResponse]:
        """List a user's reply log entries, newest first."""
        async with self._session_factory() as session:
            entries = await ActionLogRepository(session).list_for_user(
                user_id, [AutomatedAction.REPLIED], limit
            )
        return [ActionLogResponse.model_validate(entry) for entry in entries]

    def get_status(self) -> dict[str, Any]:
        """Get pipeline status."""
        return {
            "is_running": self.is_running,
            "is_processing": self._processing,
            "interval_seconds": self.interval_seconds,
            "trash_retention_days": self.trash_retention_days,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_stats": self.last_stats.model_dump() if self.last_stats else None,
        }
