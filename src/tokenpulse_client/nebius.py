"""Nebius AI Studio (Token Factory) balance client.

Nebius has no billing API reachable with an API key, so the secret is a JSON
session blob captured from the Token Factory web login::

    {"appSession": "...", "csrfCookie": "...", "csrfToken": "...", "parentId": "contract-..."}

Balance mapping:
    credits.total     = spec.netConsumptionLimit
    credits.remaining = max(limit - status.netConsumptionSpent, 0)
"""

from __future__ import annotations

import json
from decimal import Decimal, InvalidOperation
from typing import Any

from pydantic import ValidationError

from tokenpulse_client.constants import NEBIUS_BASE_URL, NEBIUS_BILLING_PATH
from tokenpulse_client.http import HttpProviderClient
from tokenpulse_client.models import (
    Account,
    Balance,
    Credits,
    ErrorKind,
    ProviderId,
    ProviderResult,
)
from tokenpulse_client.schemas import NebiusSession, NebiusTrialResponse

RECONNECT_HINT = "Please reconnect the Nebius account."


def parse_session(secret: str) -> NebiusSession | None:
    try:
        return NebiusSession.model_validate(json.loads(secret))
    except (json.JSONDecodeError, ValidationError, TypeError):
        return None


def _to_decimal(value: str | None) -> Decimal:
    if value in (None, ""):
        return Decimal("0")
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal("0")


class NebiusProviderClient(HttpProviderClient):
    provider_id = ProviderId.NEBIUS

    def __init__(self, base_url: str = NEBIUS_BASE_URL, **kwargs: Any) -> None:
        super().__init__(base_url, **kwargs)

    def auth_error_message(self, status: int) -> str:
        return f"Nebius billing session expired. {RECONNECT_HINT}"

    async def _fetch_balance(self, account: Account, secret: str) -> ProviderResult:
        session = parse_session(secret)
        if session is None:
            return self.failure(
                ErrorKind.AUTH_ERROR,
                f"Nebius billing session is missing or invalid. {RECONNECT_HINT}",
            )

        payload = await self.request_json(
            "POST",
            NEBIUS_BILLING_PATH,
            headers={
                "x-requested-with": "XMLHttpRequest",
                "x-csrf-token": session.csrf_token,
                "cookie": (
                    f"__Host-app_session={session.app_session}; "
                    f"__Host-psifi.x-csrf-token={session.csrf_cookie}"
                ),
            },
            json_body={"parentId": session.parent_id},
        )
        trial = self.parse_model(NebiusTrialResponse, payload)

        total = _to_decimal(trial.spec.net_consumption_limit)
        spent = _to_decimal(trial.status.net_consumption_spent)
        remaining = max(total - spent, Decimal("0"))
        return self.success(
            account, Balance(credits=Credits(total=total, remaining=remaining))
        )
