"""Base fetch client interface and types."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from commhub.core.types import FetchedMessage
    from commhub.models.account import ConnectedAccount


class ProviderType(str, Enum):
    """Supported account protocols."""

    GMAIL = "gmail"
    IMAP = "imap"
    EXCHANGE = "exchange"


@dataclass
class FetchSession:
    """Open connection to an external account.

    Attributes:
        account_id: Account the session belongs to.
        provider: Protocol of the session.
        handle: Provider-specific connection object.
    """

    account_id: Any
    provider: ProviderType
    handle: Any = None


@dataclass
class FetchResult:
    """Messages fetched since a cursor.

    Attributes:
        messages: Fetched messages, oldest first.
        cursor: Cursor to resume from next time, None if unchanged.
    """

    messages: list[FetchedMessage] = field(default_factory=list)
    cursor: str | None = None


@dataclass(frozen=True, slots=True)
class OutgoingReply:
    """Reply to send through an account.

    Attributes:
        to: Recipient address.
        subject: Subject line.
        body: Plain-text body.
        in_reply_to: External ID of the message being answered.
        thread_id: Provider thread ID, if known.
    """

    to: str
    subject: str
    body: str
    in_reply_to: str | None = None
    thread_id: str | None = None


class ProviderError(Exception):
    """Base exception for provider errors."""

    def __init__(self, message: str, provider: ProviderType | None = None) -> None:
        """Initialize provider error.

        Args:
            message: Error description.
            provider: Provider that caused the error.
        """
        super().__init__(message)
        self.provider = provider


class ConnectionError(ProviderError):
    """Error during connection establishment."""


class SyncError(ProviderError):
    """Error while listing messages."""


class AuthorizationError(ProviderError):
    """Credentials were rejected or have expired."""


class FetchClient(ABC):
    """Abstract base class for per-protocol fetch clients.

    Implementations wrap a provider API (Gmail, IMAP, Exchange) behind a
    connect / list / mark / send surface. Credential handling is up to the
    implementation.
    """

    @property
    @abstractmethod
    def provider_type(self) -> ProviderType:
        """Get the provider type identifier."""

    @abstractmethod
    async def connect(self, account: ConnectedAccount) -> FetchSession:
        """Open a session for an account.

        Args:
            account: Account to connect.

        Returns:
            Open session.

        Raises:
            ConnectionError: If the provider cannot be reached.
            AuthorizationError: If credentials are rejected.
        """

    @abstractmethod
    async def list_since(self, session: FetchSession, cursor: str | None) -> FetchResult:
        """List messages newer than a cursor.

        Args:
            session: Open session.
            cursor: Cursor from the previous sync, None for a first sync.

        Returns:
            Fetched messages and the next cursor.

        Raises:
            SyncError: If listing fails.
        """

    @abstractmethod
    async def mark_read(self, session: FetchSession, external_id: str) -> None:
        """Mark a message read on the provider."""

    @abstractmethod
    async def send(self, session: FetchSession, reply: OutgoingReply) -> str:
        """Send a reply.

        Args:
            session: Open session.
            reply: Reply to send.

        Returns:
            Provider-assigned message ID.
        """

    async def disconnect(self, session: FetchSession) -> None:  # noqa: B027
        """Close a session. Optional; the default does nothing."""
