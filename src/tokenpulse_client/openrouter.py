"""OpenRouter balance client.

Only provisioning keys expose ``/api/v1/credits``; regular API keys are not
supported. Token usage comes from ``/api/v1/activity`` and is best effort.
"""

from __future__ import annotations

from typing import Any

from tokenpulse_client.constants import OPENROUTER_BASE_URL
from tokenpulse_client.http import (
    HttpProviderClient,
    ProviderRequestError,
    bearer_headers,
)
from tokenpulse_client.models import (
    Account,
    Balance,
    Credits,
    ProviderId,
    ProviderResult,
    Tokens,
)
from tokenpulse_client.schemas import (
    OpenRouterActivityResponse,
    OpenRouterCreditsResponse,
)


class OpenRouterProviderClient(HttpProviderClient):
    provider_id = ProviderId.OPENROUTER
    auth_statuses = frozenset({401})

    def __init__(self, base_url: str = OPENROUTER_BASE_URL, **kwargs: Any) -> None:
        super().__init__(base_url, **kwargs)

    def auth_error_message(self, status: int) -> str:
        return "Invalid OpenRouter provisioning key"

    async def _fetch_balance(self, account: Account, secret: str) -> ProviderResult:
        headers = bearer_headers(secret)
        payload = await self.request_json("GET", "/api/v1/credits", headers=headers)
        credits_data = self.parse_model(OpenRouterCreditsResponse, payload).data

        remaining = credits_data.total_credits
        if credits_data.total_usage is not None:
            remaining = credits_data.total_credits - credits_data.total_usage
        credits = Credits(
            total=credits_data.total_credits,
            used=credits_data.total_usage,
            remaining=remaining,
        )
        tokens = await self._fetch_tokens(headers)
        return self.success(account, Balance(credits=credits, tokens=tokens))

    async def _fetch_tokens(self, headers: dict[str, str]) -> Tokens | None:
        try:
            payload = await self.request_json(
                "GET", "/api/v1/activity", headers=headers
            )
            activity = self.parse_model(OpenRouterActivityResponse, payload)
        except ProviderRequestError:
            return None
        used = sum(
            entry.prompt_tokens + entry.completion_tokens for entry in activity.data
        )
        return Tokens(used=used)
