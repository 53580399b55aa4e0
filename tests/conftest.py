"""Shared fixtures: a real async SQLite database, row factories and a recording fetch client."""

from __future__ import annotations

import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio

from commhub.core.database import Database, SessionFactory
from commhub.models.account import ConnectedAccount
from commhub.models.message import Message
from commhub.providers.base import (
    FetchClient,
    FetchResult,
    FetchSession,
    OutgoingReply,
    ProviderType,
)
from commhub.providers.registry import FetchClientRegistry
from commhub.services.reply_sender import ReplySender


@pytest_asyncio.fixture
async def database(tmp_path: Path) -> AsyncIterator[Database]:
    """Create a connected database on a temporary SQLite file."""
    db = Database(f"sqlite:///{tmp_path / 'commhub.db'}")
    await db.connect()
    await db.create_tables()
    yield db
    await db.disconnect()


@pytest.fixture
def session_factory(database: Database) -> SessionFactory:
    """Session factory bound to the test database."""
    return database.session


@pytest.fixture
def user_id() -> uuid.UUID:
    """A user ID."""
    return uuid.uuid4()


AccountFactory = Callable[..., Awaitable[ConnectedAccount]]
MessageFactory = Callable[..., Awaitable[Message]]


@pytest.fixture
def make_account(session_factory: SessionFactory, user_id: uuid.UUID) -> AccountFactory:
    """Factory inserting connected accounts."""

    async def _make(**overrides: Any) -> ConnectedAccount:
        fields: dict[str, Any] = {
            "user_id": user_id,
            "protocol": "imap",
            "email": "me@example.com",
            "sync_enabled": True,
            "sync_status": "active",
        }
        fields.update(overrides)
        account = ConnectedAccount(**fields)
        async with session_factory() as session:
            session.add(account)
            await session.commit()
            await session.refresh(account)
        return account

    return _make


@pytest.fixture
def make_message(session_factory: SessionFactory) -> MessageFactory:
    """Factory inserting mirrored messages for an account."""

    async def _make(account: ConnectedAccount, **overrides: Any) -> Message:
        fields: dict[str, Any] = {
            "user_id": account.user_id,
            "account_id": account.id,
            "external_id": f"ext-{uuid.uuid4().hex[:12]}",
            "sender": "alice@example.com",
            "subject": "Quarterly report",
            "content": "Please review the attached numbers.",
        }
        fields.update(overrides)
        message = Message(**fields)
        async with session_factory() as session:
            session.add(message)
            await session.commit()
            await session.refresh(message)
        return message

    return _make


class RecordingFetchClient(FetchClient):
    """IMAP fetch client recording sent replies, optionally failing them."""

    def __init__(self) -> None:
        self.sent: list[OutgoingReply] = []
        self.fail_with: Exception | None = None

    @property
    def provider_type(self) -> ProviderType:
        return ProviderType.IMAP

    async def connect(self, account: ConnectedAccount) -> FetchSession:
        return FetchSession(account_id=account.id, provider=ProviderType.IMAP)

    async def list_since(self, session: FetchSession, cursor: str | None) -> FetchResult:
        return FetchResult()

    async def mark_read(self, session: FetchSession, external_id: str) -> None:
        return None

    async def send(self, session: FetchSession, reply: OutgoingReply) -> str:
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append(reply)
        return f"sent-{len(self.sent)}"


@pytest.fixture
def fetch_client() -> RecordingFetchClient:
    """Fetch client recording outgoing replies."""
    return RecordingFetchClient()


@pytest.fixture
def registry(fetch_client: RecordingFetchClient) -> FetchClientRegistry:
    """Registry holding the recording client."""
    registry = FetchClientRegistry()
    registry.register(fetch_client)
    return registry


@pytest.fixture
def reply_sender(session_factory: SessionFactory, registry: FetchClientRegistry) -> ReplySender:
    """Reply sender over the recording client."""
    return ReplySender(session_factory, registry)
