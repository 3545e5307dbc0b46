"""Provider client interface and registry."""

from __future__ import annotations

import logging
from typing import Iterable, Mapping, Protocol

from tokenpulse_client.models import Account, ProviderId, ProviderResult

LOGGER = logging.getLogger("tokenpulse.providers")


class ProviderClient(Protocol):
    async def fetch_balance(self, account: Account, secret: str) -> ProviderResult:
        """Fetch the current balance; failures are returned, never raised."""

    async def test_credentials(self, account: Account, secret: str) -> ProviderResult:
        """Check that ``secret`` is accepted by the provider."""


class UnsupportedProviderError(LookupError):
    """Raised when no client is registered for a provider id."""


class ProviderRegistry:
    """Maps provider ids to their client implementations."""

    def __init__(self, clients: Mapping[ProviderId, ProviderClient] | None = None) -> None:
        self._clients: dict[ProviderId, ProviderClient] = dict(clients or {})

    def register(self, provider_id: ProviderId, client: ProviderClient) -> None:
        self._clients[ProviderId(provider_id)] = client

    def get_client(self, provider_id: ProviderId) -> ProviderClient:
        try:
            return self._clients[ProviderId(provider_id)]
        except (KeyError, ValueError) as exc:
            raise UnsupportedProviderError(
                f"No provider client registered for '{provider_id}'"
            ) from exc

    def providers(self) -> Iterable[ProviderId]:
        return tuple(self._clients)

    async def aclose(self) -> None:
        for provider_id, client in self._clients.items():
            close = getattr(client, "close", None)
            if close is None:
                continue
            try:
                await close()
            except Exception as exc:
                LOGGER.warning("Failed to close %s client: %s", provider_id.value, exc)
