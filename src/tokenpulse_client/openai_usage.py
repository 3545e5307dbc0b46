"""OpenAI usage/cost client for personal OAuth access.

The stored secret is a JSON blob::

    {"accessToken": "Bearer eyJ...", "refreshToken": "refresh_...", "expiresAt": 1234567890}

OpenAI is a usage-only provider: ``credits.used`` is the summed cost and
``tokens.used`` the summed token usage over the last 30 days; nothing is
reported as remaining.
"""

from __future__ import annotations

import json
from decimal import Decimal
from typing import Any, Callable, TypeVar

from pydantic import BaseModel, ValidationError

from tokenpulse_client.constants import OPENAI_BASE_URL, OPENAI_USAGE_DAYS_BACK
from tokenpulse_client.http import HttpProviderClient, bearer_headers
from tokenpulse_client.models import (
    Account,
    Balance,
    Credits,
    ErrorKind,
    ProviderId,
    ProviderResult,
    Tokens,
)
from tokenpulse_client.schemas import (
    OpenAiCostEntry,
    OpenAiPage,
    OpenAiTokenData,
    OpenAiUsageEntry,
)

USAGE_PATH = "/v1/organization/usage/completions"
COSTS_PATH = "/v1/organization/costs"
SECONDS_PER_DAY = 86400
# Guards against a provider that keeps returning a cursor.
MAX_PAGES = 100

EntryT = TypeVar("EntryT", bound=BaseModel)


def parse_token_data(secret: str) -> OpenAiTokenData | None:
    try:
        return OpenAiTokenData.model_validate(json.loads(secret))
    except (json.JSONDecodeError, ValidationError, TypeError):
        return None


class OpenAiUsageProviderClient(HttpProviderClient):
    provider_id = ProviderId.OPENAI

    def __init__(self, base_url: str = OPENAI_BASE_URL, **kwargs: Any) -> None:
        super().__init__(base_url, **kwargs)

    def auth_error_message(self, status: int) -> str:
        return f"OpenAI authentication failed: HTTP {status}"

    async def _fetch_balance(self, account: Account, secret: str) -> ProviderResult:
        token = parse_token_data(secret)
        if token is None:
            return self.failure(
                ErrorKind.AUTH_ERROR,
                "OpenAI OAuth token is missing or invalid. Please reconnect.",
            )
        now = int(self._time_provider())
        if token.expires_at and token.expires_at < now:
            return self.failure(
                ErrorKind.AUTH_ERROR,
                "OpenAI OAuth token expired. Please reconnect.",
            )

        headers = bearer_headers(token.bearer_token())
        headers["OpenAI-Beta"] = "usage=v1"
        params = {
            "bucket_width": "1d",
            "start_time": str(now - OPENAI_USAGE_DAYS_BACK * SECONDS_PER_DAY),
            "end_time": str(now),
        }

        usage = await self._fetch_paginated(
            USAGE_PATH, headers, params, OpenAiUsageEntry
        )
        costs = await self._fetch_paginated(COSTS_PATH, headers, params, OpenAiCostEntry)

        credits_used = sum((entry.amount for entry in costs), Decimal("0"))
        tokens_used = sum(entry.total_tokens for entry in usage)
        return self.success(
            account,
            Balance(credits=Credits(used=credits_used), tokens=Tokens(used=tokens_used)),
        )

    async def _fetch_paginated(
        self,
        path: str,
        headers: dict[str, str],
        params: dict[str, str],
        schema: type[EntryT],
    ) -> list[EntryT]:
        items: list[EntryT] = []
        cursor: str | None = None
        for _ in range(MAX_PAGES):
            request_params = dict(params)
            if cursor is not None:
                request_params["page"] = cursor
            payload = await self.request_json(
                "GET", path, headers=headers, params=request_params
            )
            page = self.parse_model(OpenAiPage, payload)
            items.extend(_parse_entries(page.data, schema.model_validate))
            cursor = page.next_page
            if not cursor:
                break
        return items


def _parse_entries(
    raw_items: list[dict[str, Any]], parse: Callable[[Any], EntryT]
) -> list[EntryT]:
    entries: list[EntryT] = []
    for raw in raw_items:
        try:
            entries.append(parse(raw))
        except ValidationError:
            continue
    return entries
