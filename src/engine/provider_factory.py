"""Builds the provider registry from settings."""

from __future__ import annotations

from typing import Any, Callable, Mapping

import aiohttp

from tokenpulse_client.cline import ClineProviderClient
from tokenpulse_client.constants import (
    CLINE_BASE_URL,
    DEFAULT_CONNECT_TIMEOUT_SEC,
    DEFAULT_READ_TIMEOUT_SEC,
    DEFAULT_TIMEOUT_SEC,
    NEBIUS_BASE_URL,
    OPENAI_BASE_URL,
    OPENROUTER_BASE_URL,
)
from tokenpulse_client.http import HttpProviderClient
from tokenpulse_client.models import ProviderId
from tokenpulse_client.nebius import NebiusProviderClient
from tokenpulse_client.openai_usage import OpenAiUsageProviderClient
from tokenpulse_client.openrouter import OpenRouterProviderClient
from tokenpulse_client.registry import ProviderRegistry

CLIENT_TYPES: dict[ProviderId, tuple[type[HttpProviderClient], str]] = {
    ProviderId.OPENROUTER: (OpenRouterProviderClient, OPENROUTER_BASE_URL),
    ProviderId.CLINE: (ClineProviderClient, CLINE_BASE_URL),
    ProviderId.NEBIUS: (NebiusProviderClient, NEBIUS_BASE_URL),
    ProviderId.OPENAI: (OpenAiUsageProviderClient, OPENAI_BASE_URL),
}


def build_provider_client(
    provider_id: ProviderId,
    options: Mapping[str, Any] | None = None,
    *,
    session: aiohttp.ClientSession | None = None,
    time_provider: Callable[[], float] | None = None,
) -> HttpProviderClient:
    """
    Build one provider client from its options.

    Args:
        provider_id: Provider to build a client for
        options: Optional mapping containing:
            - base_url: str - Override the provider API endpoint
            - timeout_sec: float (default: 30.0) - Total request timeout
            - connect_timeout_sec: float (default: 10.0) - Connect timeout
            - read_timeout_sec: float (default: 20.0) - Socket read timeout
            - verify_ssl: bool (default: True) - Verify TLS certificates
        session: Shared aiohttp session; each client creates its own if omitted
        time_provider: Clock used to stamp snapshots
    """
    client_type, default_base_url = CLIENT_TYPES[ProviderId(provider_id)]
    options = options or {}
    return client_type(
        base_url=str(options.get("base_url", default_base_url)),
        session=session,
        timeout=float(options.get("timeout_sec", DEFAULT_TIMEOUT_SEC)),
        connect_timeout=float(
            options.get("connect_timeout_sec", DEFAULT_CONNECT_TIMEOUT_SEC)
        ),
        read_timeout=float(options.get("read_timeout_sec", DEFAULT_READ_TIMEOUT_SEC)),
        verify_ssl=bool(options.get("verify_ssl", True)),
        time_provider=time_provider,
    )


def build_provider_registry(
    config: Mapping[str, Mapping[str, Any]] | None = None,
    *,
    session: aiohttp.ClientSession | None = None,
    time_provider: Callable[[], float] | None = None,
) -> ProviderRegistry:
    """Build a registry with a client for every supported provider.

    ``config`` maps provider ids to the options accepted by
    ``build_provider_client``.
    """
    config = config or {}
    registry = ProviderRegistry()
    for provider_id in ProviderId:
        registry.register(
            provider_id,
            build_provider_client(
                provider_id,
                config.get(provider_id.value),
                session=session,
                time_provider=time_provider,
            ),
        )
    return registry
