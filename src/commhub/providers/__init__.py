"""Fetch client abstraction layer.

Each protocol (Gmail, IMAP, Exchange) is served by a ``FetchClient``
registered in a ``FetchClientRegistry``; the sync runner looks clients up by
the account's protocol.
"""

from commhub.providers.base import (
    AuthorizationError,
    ConnectionError,
    FetchClient,
    FetchResult,
    FetchSession,
    OutgoingReply,
    ProviderError,
    ProviderType,
    SyncError,
)
from commhub.providers.registry import FetchClientRegistry, ProviderNotFoundError

__all__ = [
    "AuthorizationError",
    "ConnectionError",
    "FetchClient",
    "FetchClientRegistry",
    "FetchResult",
    "FetchSession",
    "OutgoingReply",
    "ProviderError",
    "ProviderNotFoundError",
    "ProviderType",
    "SyncError",
]
