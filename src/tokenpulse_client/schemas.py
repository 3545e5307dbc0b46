"""Pydantic schemas for provider API responses."""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

# ============================================================================
# OpenRouter
# ============================================================================


class OpenRouterCreditsData(BaseModel):
    model_config = ConfigDict(extra="allow")

    total_credits: Decimal
    total_usage: Decimal | None = None


class OpenRouterCreditsResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    data: OpenRouterCreditsData


class OpenRouterActivityEntry(BaseModel):
    model_config = ConfigDict(extra="allow")

    prompt_tokens: int = 0
    completion_tokens: int = 0


class OpenRouterActivityResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    data: list[OpenRouterActivityEntry] = Field(default_factory=list)


# ============================================================================
# Cline
# ============================================================================


class ClineOrganization(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    organization_id: str = Field(..., alias="organizationId")
    member_id: str = Field(..., alias="memberId")
    active: bool = False


class ClineUser(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    organizations: list[ClineOrganization] | None = None

    def active_organization(self) -> ClineOrganization | None:
        for organization in self.organizations or []:
            if organization.active:
                return organization
        return None


class ClineBalance(BaseModel):
    model_config = ConfigDict(extra="allow")

    balance: Decimal = Decimal("0")


class ClineUsageTransaction(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    credits_used: Decimal = Field(Decimal("0"), alias="creditsUsed")
    total_tokens: int = Field(0, alias="totalTokens")


class ClineUsages(BaseModel):
    model_config = ConfigDict(extra="allow")

    items: list[ClineUsageTransaction] = Field(default_factory=list)


class ClineEnvelope(BaseModel):
    """Cline wraps every payload in ``{"success": bool, "data": ...}``."""

    model_config = ConfigDict(extra="allow")

    success: bool = False
    data: Any = None


# ============================================================================
# Nebius
# ============================================================================


class NebiusSession(BaseModel):
    """Billing session captured from the Token Factory web login."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    app_session: str = Field(..., alias="appSession")
    csrf_cookie: str = Field(..., alias="csrfCookie")
    csrf_token: str = Field(..., alias="csrfToken")
    parent_id: str = Field(..., alias="parentId")

    @field_validator("app_session", "csrf_cookie", "csrf_token", "parent_id")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Session field cannot be blank")
        return v


class NebiusTrialSpec(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    net_consumption_limit: str | None = Field(None, alias="netConsumptionLimit")
    limit_exceeded: bool | None = Field(None, alias="limitExceeded")
    switched_to_paid: bool | None = Field(None, alias="switchedToPaid")


class NebiusTrialStatus(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    net_consumption_spent: str | None = Field(None, alias="netConsumptionSpent")
    days_left: str | None = Field(None, alias="daysLeft")
    days_limit: str | None = Field(None, alias="daysLimit")


class NebiusTrialResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    spec: NebiusTrialSpec
    status: NebiusTrialStatus


# ============================================================================
# OpenAI
# ============================================================================


class OpenAiTokenData(BaseModel):
    """OAuth token blob stored as the OpenAI account secret."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    access_token: str = Field(..., alias="accessToken")
    refresh_token: str = Field(..., alias="refreshToken")
    expires_at: int = Field(0, alias="expiresAt")

    @field_validator("access_token", "refresh_token")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Token cannot be blank")
        return v

    def bearer_token(self) -> str:
        token = self.access_token.strip()
        if token.lower().startswith("bearer "):
            return token[len("bearer ") :].strip()
        return token


class OpenAiUsageEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    input_tokens: int | None = Field(None, alias="inputTokens")
    output_tokens: int | None = Field(None, alias="outputTokens")
    cached_input_tokens: int | None = Field(None, alias="cachedInputTokens")
    reasoning_tokens: int | None = Field(None, alias="reasoningTokens")

    @property
    def total_tokens(self) -> int:
        return (
            (self.input_tokens or 0)
            + (self.output_tokens or 0)
            + (self.cached_input_tokens or 0)
            + (self.reasoning_tokens or 0)
        )


class OpenAiCostEntry(BaseModel):
    model_config = ConfigDict(extra="allow")

    amount: Decimal = Decimal("0")

    @field_validator("amount", mode="before")
    @classmethod
    def validate_amount(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return v.get("value", 0)
        if isinstance(v, (int, float, str, Decimal)):
            return v
        return 0


class OpenAiPage(BaseModel):
    model_config = ConfigDict(extra="allow")

    data: list[dict[str, Any]] = Field(default_factory=list)
    next_page: str | None = None
