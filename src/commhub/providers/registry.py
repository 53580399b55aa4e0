"""Registry of fetch clients keyed by protocol."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from commhub.providers.base import ProviderError, ProviderType

if TYPE_CHECKING:
    from commhub.providers.base import FetchClient

logger = structlog.get_logger(__name__)


class ProviderNotFoundError(ProviderError):
    """Raised when no fetch client is registered for a protocol."""


class FetchClientRegistry:
    """Registry for fetch clients.

    Example:
        registry = FetchClientRegistry()
        registry.register(imap_client)
        client = registry.get(ProviderType.IMAP)
    """

    def __init__(self) -> None:
        """Initialize empty registry."""
        self._clients: dict[ProviderType, FetchClient] = {}

    def register(self, client: FetchClient) -> None:
        """Register a fetch client, replacing any client of the same type.

        Args:
            client: Client instance to register.
        """
        provider_type = client.provider_type
        self._clients[provider_type] = client
        logger.info("fetch_client_registered", provider_type=provider_type.value)

    def unregister(self, provider_type: ProviderType) -> bool:
        """Unregister a client.

        Returns:
            True if a client was removed.
        """
        if provider_type in self._clients:
            del self._clients[provider_type]
            logger.info("fetch_client_unregistered", provider_type=provider_type.value)
            return True
        return False

    def get(self, provider_type: ProviderType | str) -> FetchClient:
        """Get the client for a protocol.

        Args:
            provider_type: Protocol, as enum or its string value.

        Returns:
            The registered client.

        Raises:
            ProviderNotFoundError: If the protocol is unknown or unregistered.
        """
        try:
            key = ProviderType(provider_type)
        except ValueError as e:
            raise ProviderNotFoundError(f"Unsupported protocol '{provider_type}'") from e
        client = self._clients.get(key)
        if client is None:
            raise ProviderNotFoundError(
                f"No fetch client registered for '{key.value}'",
                provider=key,
            )
        return client

    def has(self, provider_type: ProviderType) -> bool:
        """Check if a client is registered for a protocol."""
        return provider_type in self._clients

    def list_providers(self) -> list[ProviderType]:
        """List registered protocols."""
        return list(self._clients.keys())
