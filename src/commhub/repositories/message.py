"""Canonical message store repository."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, DateTime, and_, case, delete, func, literal, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.sql.elements import ColumnElement
from sqlalchemy.ext.asyncio import AsyncSession

from commhub.core.types import FetchedMessage
from commhub.models.account import ConnectedAccount
from commhub.models.base import as_utc, utcnow
from commhub.models.message import AnalysisStatus, Message, SentReply


def _parse_received_at(value: str | None) -> datetime:
    if not value:
        return utcnow()
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return utcnow()
    return as_utc(parsed) or utcnow()


class MessageRepository:
    """Repository for the local message mirror.

    Client-driven mutations (read, archive, categorize, trash) are scoped by
    message and user and are idempotent: applying one twice leaves the same
    state. Mutations made on behalf of the server (sync, automation) stamp
    ``server_modified_at``.
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async SQLAlchemy session.
        """
        self.session = session

    async def get_by_id(self, message_id: UUID, user_id: UUID | None = None) -> Message | None:
        """Get message by ID.

        Args:
            message_id: Message UUID.
            user_id: Owning user; when given, other users' messages are not found.

        Returns:
            Message if found, None otherwise.
        """
        query = (
            select(Message)
            .where(Message.id == message_id)
            .execution_options(populate_existing=True)
        )
        if user_id is not None:
            query = query.where(Message.user_id == user_id)
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_by_external_id(self, account_id: UUID, external_id: str) -> Message | None:
        """Get message by its provider-side ID.

        Args:
            account_id: Account UUID.
            external_id: Provider message ID.

        Returns:
            Message if found, None otherwise.
        """
        result = await self.session.execute(
            select(Message).where(
                Message.account_id == account_id,
                Message.external_id == external_id,
            )
        )
        return result.scalar_one_or_none()

    async def store_synced_message(self, account: ConnectedAccount, data: FetchedMessage) -> bool:
        """Insert a fetched message unless it is already mirrored.

        Existing rows are left untouched so local state set by clients or
        automation survives re-syncs.

        Args:
            account: Account the message was fetched from.
            data: Fetched message data.

        Returns:
            True if a new row was inserted.
        """
        external_id = data["external_id"]
        if await self.get_by_external_id(account.id, external_id) is not None:
            return False

        message = Message(
            user_id=account.user_id,
            account_id=account.id,
            external_id=external_id,
            thread_id=data.get("thread_id"),
            sender=data.get("sender") or "",
            recipient=data.get("recipient"),
            subject=data.get("subject"),
            content=data.get("content") or "",
            received_at=_parse_received_at(data.get("received_at")),
            is_read=bool(data.get("is_read", False)),
        )
        self.session.add(message)
        try:
            await self.session.commit()
        except IntegrityError:
            # Another run inserted the same message first
            await self.session.rollback()
            return False
        return True

    @staticmethod
    def _unchanged_since(since: datetime | None) -> list[ColumnElement[bool]]:
        if since is None:
            return []
        return [
            or_(
                Message.server_modified_at.is_(None),
                Message.server_modified_at <= as_utc(since),
            )
        ]

    async def _update_owned(
        self,
        message_id: UUID,
        user_id: UUID,
        unchanged_since: datetime | None,
        **values: object,
    ) -> bool:
        result = await self.session.execute(
            update(Message)
            .where(
                Message.id == message_id,
                Message.user_id == user_id,
                *self._unchanged_since(unchanged_since),
            )
            .values(updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        return result.rowcount == 1

    async def update_read_status(
        self,
        message_id: UUID,
        user_id: UUID,
        is_read: bool,
        *,
        unchanged_since: datetime | None = None,
    ) -> bool:
        """Set the read flag.

        Args:
            message_id: Message UUID.
            user_id: Owning user.
            is_read: New read flag.
            unchanged_since: When given, the update only applies if the server
                has not modified the message after this time.

        Returns:
            True if the message exists for the user and the guard held.
        """
        return await self._update_owned(message_id, user_id, unchanged_since, is_read=is_read)

    async def archive(
        self,
        message_id: UUID,
        user_id: UUID,
        archived: bool = True,
        *,
        unchanged_since: datetime | None = None,
    ) -> bool:
        """Archive or unarchive a message.

        Re-archiving keeps the first archive time.

        Returns:
            True if the message exists for the user and the guard held.
        """
        archived_at: object = None
        if archived:
            archived_at = func.coalesce(
                Message.archived_at, literal(utcnow(), DateTime(timezone=True))
            )
        return await self._update_owned(
            message_id, user_id, unchanged_since, archived_at=archived_at
        )

    async def categorize(
        self,
        message_id: UUID,
        user_id: UUID,
        category_id: str,
        *,
        unchanged_since: datetime | None = None,
    ) -> bool:
        """Assign a category.

        Returns:
            True if the message exists for the user and the guard held.
        """
        return await self._update_owned(
            message_id, user_id, unchanged_since, category_id=category_id
        )

    async def trash(
        self,
        message_id: UUID,
        user_id: UUID,
        *,
        automated: bool = False,
        unchanged_since: datetime | None = None,
    ) -> bool:
        """Move a message to trash.

        Trashing an already trashed message keeps its trash time and origin.

        Args:
            message_id: Message UUID.
            user_id: Owning user.
            automated: True when automation trashes the message; marks it
                restorable and stamps the server-side modification time.
            unchanged_since: When given, the update only applies if the server
                has not modified the message after this time.

        Returns:
            True if the message exists for the user and the guard held.
        """
        now = utcnow()
        values: dict[str, object] = {
            "is_trashed": True,
            "trashed_at": func.coalesce(
                Message.trashed_at, literal(now, DateTime(timezone=True))
            ),
            "auto_deleted": case(
                (Message.is_trashed.is_(True), Message.auto_deleted),
                else_=literal(automated, Boolean),
            ),
        }
        if automated:
            values["server_modified_at"] = now
        return await self._update_owned(message_id, user_id, unchanged_since, **values)

    async def restore(
        self, message_id: UUID, user_id: UUID, *, trashed_since: datetime | None = None
    ) -> bool:
        """Restore an automatically trashed message.

        Only messages trashed by automation are restorable.

        Args:
            message_id: Message UUID.
            user_id: Owning user.
            trashed_since: When given, messages trashed before this time are
                past their restore window.

        Returns:
            True if the message was restored.
        """
        now = utcnow()
        window = [] if trashed_since is None else [Message.trashed_at >= as_utc(trashed_since)]
        result = await self.session.execute(
            update(Message)
            .where(
                Message.id == message_id,
                Message.user_id == user_id,
                Message.is_trashed.is_(True),
                Message.auto_deleted.is_(True),
                *window,
            )
            .values(
                is_trashed=False,
                trashed_at=None,
                auto_deleted=False,
                server_modified_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        return result.rowcount == 1

    async def delete_trashed_before(self, cutoff: datetime) -> int:
        """Permanently delete messages that sat in trash since before a cutoff.

        Args:
            cutoff: Messages trashed before this time are removed.

        Returns:
            Number of messages deleted.
        """
        result = await self.session.execute(
            delete(Message)
            .where(Message.is_trashed.is_(True), Message.trashed_at < as_utc(cutoff))
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        return result.rowcount

    async def list_unanalyzed(
        self, user_id: UUID, stale_before: datetime, limit: int | None = None
    ) -> list[Message]:
        """List untrashed messages awaiting analysis.

        Includes messages whose analysis claim is older than ``stale_before``.

        Args:
            user_id: Owning user.
            stale_before: Claims older than this are treated as abandoned.
            limit: Maximum messages to return.

        Returns:
            Messages oldest first.
        """
        query = (
            select(Message)
            .where(
                Message.user_id == user_id,
                Message.is_trashed.is_(False),
                or_(
                    Message.analysis_status.is_(None),
                    and_(
                        Message.analysis_status == AnalysisStatus.ANALYZING.value,
                        Message.analysis_claimed_at < stale_before,
                    ),
                ),
            )
            .order_by(Message.received_at, Message.id)
        )
        if limit is not None:
            query = query.limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def claim_for_analysis(self, message_id: UUID, stale_before: datetime) -> bool:
        """Atomically claim a message for analysis.

        Args:
            message_id: Message UUID.
            stale_before: Claims older than this may be taken over.

        Returns:
            True if this caller owns the analysis.
        """
        result = await self.session.execute(
            update(Message)
            .where(
                Message.id == message_id,
                Message.is_trashed.is_(False),
                or_(
                    Message.analysis_status.is_(None),
                    and_(
                        Message.analysis_status == AnalysisStatus.ANALYZING.value,
                        Message.analysis_claimed_at < stale_before,
                    ),
                ),
            )
            .values(
                analysis_status=AnalysisStatus.ANALYZING.value,
                analysis_claimed_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        return result.rowcount == 1

    async def save_analysis(
        self,
        message_id: UUID,
        *,
        spam_probability: float,
        reply_confidence: float | None,
        priority_score: float | None = None,
    ) -> None:
        """Persist analysis results and finish the claim.

        Args:
            message_id: Message UUID.
            spam_probability: Spam probability in [0, 1].
            reply_confidence: Reply confidence in [0, 1], None without a draft.
            priority_score: Optional priority score.
        """
        now = utcnow()
        await self.session.execute(
            update(Message)
            .where(Message.id == message_id)
            .values(
                analysis_status=AnalysisStatus.ANALYZED.value,
                analysis_claimed_at=None,
                analyzed_at=now,
                spam_probability=spam_probability,
                reply_confidence=reply_confidence,
                priority_score=priority_score,
                updated_at=now,
            )
        )
        await self.session.commit()

    async def release_analysis(self, message_id: UUID, max_attempts: int) -> bool:
        """Give up the claim after a failed analysis.

        Args:
            message_id: Message UUID.
            max_attempts: Attempts after which the message is skipped.

        Returns:
            True if the message was marked skipped.
        """
        message = await self.get_by_id(message_id)
        if message is None:
            return False
        attempts = message.analysis_attempts + 1
        skipped = attempts >= max_attempts
        await self.session.execute(
            update(Message)
            .where(Message.id == message_id)
            .values(
                analysis_status=AnalysisStatus.SKIPPED.value if skipped else None,
                analysis_claimed_at=None,
                analysis_attempts=attempts,
            )
        )
        await self.session.commit()
        return skipped

    async def get_sent_reply(self, dedup_key: str) -> SentReply | None:
        """Get the outbox entry for a dedup key.

        Args:
            dedup_key: Reply dedup key.

        Returns:
            Outbox entry if the reply was reserved or sent.
        """
        result = await self.session.execute(
            select(SentReply).where(SentReply.dedup_key == dedup_key)
        )
        return result.scalar_one_or_none()

    async def reserve_reply(self, *, dedup_key: str, message: Message, body: str) -> bool:
        """Reserve an outbox slot before sending.

        Returns:
            False if the dedup key is already reserved or sent.
        """
        self.session.add(
            SentReply(
                dedup_key=dedup_key,
                message_id=message.id,
                user_id=message.user_id,
                body=body,
            )
        )
        try:
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            return False
        return True

    async def confirm_reply(self, dedup_key: str, provider_message_id: str | None) -> None:
        """Mark a reserved reply as sent."""
        await self.session.execute(
            update(SentReply)
            .where(SentReply.dedup_key == dedup_key)
            .values(provider_message_id=provider_message_id, sent_at=utcnow())
        )
        await self.session.commit()

    async def release_reply(self, dedup_key: str) -> None:
        """Drop a reservation whose send failed so a retry may send again."""
        await self.session.execute(delete(SentReply).where(SentReply.dedup_key == dedup_key))
        await self.session.commit()
