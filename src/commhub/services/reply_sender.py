"""Deduplicated reply sending."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from commhub.providers.base import OutgoingReply
from commhub.repositories.account import AccountRepository
from commhub.repositories.message import MessageRepository

if TYPE_CHECKING:
    from commhub.core.database import SessionFactory
    from commhub.models.message import Message
    from commhub.providers.registry import FetchClientRegistry

logger = structlog.get_logger(__name__)


class ReplySendError(Exception):
    """Raised when a reply could not be sent."""

    def __init__(self, message: str, dedup_key: str | None = None) -> None:
        """Initialize reply send error.

        Args:
            message: Error description.
            dedup_key: Dedup key of the failed send.
        """
        super().__init__(message)
        self.dedup_key = dedup_key


def reply_subject(subject: str | None) -> str:
    """Prefix a subject with ``Re:`` unless it already has one."""
    subject = (subject or "").strip()
    if subject.lower().startswith("re:"):
        return subject
    return f"Re: {subject}" if subject else "Re:"


class ReplySender:
    """Sends replies through the account's fetch client at most once per key.

    A reply is reserved in the ``sent_replies`` outbox before the provider
    call. A second send with the same dedup key finds the reservation and
    returns without contacting the provider; a failed send drops the
    reservation so a later retry can go through.
    """

    def __init__(self, session_factory: SessionFactory, registry: FetchClientRegistry) -> None:
        """Initialize reply sender.

        Args:
            session_factory: Factory for async sessions.
            registry: Fetch clients by protocol.
        """
        self._session_factory = session_factory
        self._registry = registry

    async def send_reply(self, message: Message, body: str, dedup_key: str) -> bool:
        """Send a reply to a message.

        Args:
            message: Message being answered.
            body: Reply body.
            dedup_key: Key identifying this logical send.

        Returns:
            True if the reply was sent now, False if it was already sent.

        Raises:
            ReplySendError: If the account or client is unavailable or the
                provider rejects the send.
        """
        async with self._session_factory() as session:
            account = await AccountRepository(session).get_by_id(message.account_id)
            if account is None:
                raise ReplySendError(f"Account {message.account_id} not found", dedup_key)
            reserved = await MessageRepository(session).reserve_reply(
                dedup_key=dedup_key, message=message, body=body
            )
        if not reserved:
            await logger.ainfo("reply_already_sent", dedup_key=dedup_key)
            return False

        reply = OutgoingReply(
            to=message.sender,
            subject=reply_subject(message.subject),
            body=body,
            in_reply_to=message.external_id,
            thread_id=message.thread_id,
        )
        try:
            client = self._registry.get(account.protocol)
            fetch_session = await client.connect(account)
            try:
                provider_message_id = await client.send(fetch_session, reply)
            finally:
                await client.disconnect(fetch_session)
        except Exception as e:
            async with self._session_factory() as session:
                await MessageRepository(session).release_reply(dedup_key)
            await logger.awarning("reply_send_failed", dedup_key=dedup_key, error=str(e))
            raise ReplySendError(str(e), dedup_key) from e

        async with self._session_factory() as session:
            await MessageRepository(session).confirm_reply(dedup_key, provider_message_id)
        await logger.ainfo(
            "reply_sent",
            dedup_key=dedup_key,
            message_id=str(message.id),
            provider_message_id=provider_message_id,
        )
        return True
