"""Tests for ReplySender."""

from __future__ import annotations

import uuid

import pytest

from commhub.core.database import SessionFactory
from commhub.providers.base import ConnectionError
from commhub.repositories.message import MessageRepository
from commhub.services.reply_sender import ReplySender, ReplySendError, reply_subject


class TestReplySubject:
    """Tests for reply_subject."""

    def test_prefixes(self) -> None:
        """Test subjects get a single Re: prefix."""
        assert reply_subject("Lunch") == "Re: Lunch"
        assert reply_subject("RE: Lunch") == "RE: Lunch"
        assert reply_subject(None) == "Re:"


class TestReplySender:
    """Tests for ReplySender."""

    @pytest.mark.asyncio
    async def test_sends_once_per_key(
        self,
        reply_sender: ReplySender,
        fetch_client,
        session_factory: SessionFactory,
        make_account,
        make_message,
    ) -> None:
        """Test a repeated send with the same key does not reach the provider."""
        account = await make_account()
        message = await make_message(account, subject="Lunch", thread_id="t-1")

        first = await reply_sender.send_reply(message, "See you there", "reply-1")
        second = await reply_sender.send_reply(message, "See you there", "reply-1")

        assert first is True
        assert second is False
        assert len(fetch_client.sent) == 1
        sent = fetch_client.sent[0]
        assert sent.to == "alice@example.com"
        assert sent.subject == "Re: Lunch"
        assert sent.in_reply_to == message.external_id
        assert sent.thread_id == "t-1"
        async with session_factory() as session:
            outbox = await MessageRepository(session).get_sent_reply("reply-1")
        assert outbox is not None
        assert outbox.provider_message_id == "sent-1"

    @pytest.mark.asyncio
    async def test_failure_releases_reservation(
        self,
        reply_sender: ReplySender,
        fetch_client,
        session_factory: SessionFactory,
        make_account,
        make_message,
    ) -> None:
        """Test a failed send raises and a retry may send again."""
        account = await make_account()
        message = await make_message(account)
        fetch_client.fail_with = ConnectionError("smtp down")

        with pytest.raises(ReplySendError, match="smtp down") as exc_info:
            await reply_sender.send_reply(message, "Thanks", "reply-2")

        assert exc_info.value.dedup_key == "reply-2"
        async with session_factory() as session:
            assert await MessageRepository(session).get_sent_reply("reply-2") is None

        fetch_client.fail_with = None
        assert await reply_sender.send_reply(message, "Thanks", "reply-2") is True
        assert len(fetch_client.sent) == 1

    @pytest.mark.asyncio
    async def test_missing_account(
        self, reply_sender: ReplySender, make_account, make_message
    ) -> None:
        """Test a message whose account is gone cannot be answered."""
        account = await make_account()
        message = await make_message(account, account_id=uuid.uuid4())

        with pytest.raises(ReplySendError, match="not found"):
            await reply_sender.send_reply(message, "Thanks", "reply-3")

    @pytest.mark.asyncio
    async def test_unsupported_protocol(
        self, reply_sender: ReplySender, make_account, make_message
    ) -> None:
        """Test an account without a fetch client raises and keeps no reservation."""
        account = await make_account(protocol="gmail")
        message = await make_message(account)

        with pytest.raises(ReplySendError):
            await reply_sender.send_reply(message, "Thanks", "reply-4")
