"""Cline balance client."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from tokenpulse_client.constants import CLINE_BASE_URL, CLINE_CREDITS_PER_DOLLAR
from tokenpulse_client.http import (
    HttpProviderClient,
    ProviderAuthError,
    ProviderRequestError,
    SchemaT,
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
    ClineBalance,
    ClineEnvelope,
    ClineUsages,
    ClineUsageTransaction,
    ClineUser,
)

_CENT = Decimal("0.01")


def credits_to_usd(credits: Decimal) -> Decimal:
    """Convert Cline micro-dollar credits to dollars rounded to cents."""
    return (credits / Decimal(CLINE_CREDITS_PER_DOLLAR)).quantize(
        _CENT, rounding=ROUND_HALF_UP
    )


class ClineProviderClient(HttpProviderClient):
    provider_id = ProviderId.CLINE

    def __init__(self, base_url: str = CLINE_BASE_URL, **kwargs: Any) -> None:
        super().__init__(base_url, **kwargs)

    def auth_error_message(self, status: int) -> str:
        return "Invalid Cline token"

    async def _fetch_balance(self, account: Account, secret: str) -> ProviderResult:
        headers = bearer_headers(secret)
        me = await self._fetch_me(headers)

        organization = me.active_organization()
        if organization is not None:
            base = f"/api/v1/organizations/{organization.organization_id}"
            balance_path = f"{base}/balance"
            usages_path = f"{base}/members/{organization.member_id}/usages"
        else:
            balance_path = f"/api/v1/users/{me.id}/balance"
            usages_path = f"/api/v1/users/{me.id}/usages"

        balance = await self._fetch_optional(balance_path, headers, ClineBalance)
        usages = await self._fetch_optional(usages_path, headers, ClineUsages)
        items: list[ClineUsageTransaction] = usages.items if usages else []

        remaining = balance.balance if balance else Decimal("0")
        credits_used = sum((item.credits_used for item in items), Decimal("0"))
        tokens_used = sum(item.total_tokens for item in items)
        return self.success(
            account,
            Balance(
                credits=Credits(
                    remaining=credits_to_usd(remaining),
                    used=credits_to_usd(credits_used),
                ),
                tokens=Tokens(used=tokens_used),
            ),
        )

    async def test_credentials(self, account: Account, secret: str) -> ProviderResult:
        try:
            await self._fetch_me(bearer_headers(secret))
        except ProviderRequestError as exc:
            return self.map_error(exc)
        return self.success(account, Balance())

    async def _fetch_me(self, headers: dict[str, str]) -> ClineUser:
        payload = await self.request_json("GET", "/api/v1/users/me", headers=headers)
        envelope = self.parse_model(ClineEnvelope, payload)
        if not envelope.success or envelope.data is None:
            raise ProviderAuthError("Failed to fetch Cline user info")
        return self.parse_model(ClineUser, envelope.data)

    async def _fetch_optional(
        self, path: str, headers: dict[str, str], schema: type[SchemaT]
    ) -> SchemaT | None:
        payload = await self.request_json("GET", path, headers=headers)
        envelope = self.parse_model(ClineEnvelope, payload)
        if not envelope.success or envelope.data is None:
            return None
        return self.parse_model(schema, envelope.data)
