"""Shared data models for TokenPulse balance tracking.

Pydantic-based value types: accounts, balances, snapshots and the tagged
``ProviderResult`` union stored per account by the refresh engine.
"""

from __future__ import annotations

import time
import uuid
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class ProviderId(str, Enum):
    """Supported balance providers."""

    OPENROUTER = "openrouter"
    CLINE = "cline"
    NEBIUS = "nebius"
    OPENAI = "openai"

    @property
    def display_name(self) -> str:
        return _PROVIDER_DISPLAY_NAMES[self]


_PROVIDER_DISPLAY_NAMES = {
    ProviderId.OPENROUTER: "OpenRouter",
    ProviderId.CLINE: "Cline",
    ProviderId.NEBIUS: "Nebius",
    ProviderId.OPENAI: "OpenAI (Codex Usage)",
}


class AuthType(str, Enum):
    """Authentication types, one canonical type per provider."""

    OPENROUTER_PROVISIONING_KEY = "openrouter_provisioning_key"
    CLINE_API_KEY = "cline_api_key"
    NEBIUS_BILLING_SESSION = "nebius_billing_session"
    OPENAI_OAUTH = "openai_oauth"
    # Legacy persisted value, migrated to OPENROUTER_PROVISIONING_KEY on load.
    OPENROUTER_API_KEY = "openrouter_api_key"


_CANONICAL_AUTH_TYPES = {
    ProviderId.OPENROUTER: AuthType.OPENROUTER_PROVISIONING_KEY,
    ProviderId.CLINE: AuthType.CLINE_API_KEY,
    ProviderId.NEBIUS: AuthType.NEBIUS_BILLING_SESSION,
    ProviderId.OPENAI: AuthType.OPENAI_OAUTH,
}

_LEGACY_AUTH_TYPES = {
    AuthType.OPENROUTER_API_KEY.value: AuthType.OPENROUTER_PROVISIONING_KEY,
}


def canonical_auth_type(provider_id: ProviderId | str) -> AuthType:
    """Return the only auth type accepted for ``provider_id``."""
    return _CANONICAL_AUTH_TYPES[ProviderId(provider_id)]


def generate_key_preview(secret: str) -> str:
    """Build a masked display preview such as ``sk-or-…91bc``."""
    if len(secret) < 8:
        return "…"
    return f"{secret[:6]}…{secret[-4:]}"


class Account(BaseModel):
    """A configured connection to one provider."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str = ""
    provider_id: ProviderId
    auth_type: AuthType | None = None
    enabled: bool = True
    key_preview: str = ""

    @model_validator(mode="before")
    @classmethod
    def migrate_auth_type(cls, data: Any) -> Any:
        """Fill in the canonical auth type and migrate legacy values."""
        if not isinstance(data, dict):
            return data
        raw = data.get("auth_type")
        if isinstance(raw, AuthType):
            raw = raw.value
        if raw is None and data.get("provider_id") is not None:
            try:
                canonical = canonical_auth_type(data["provider_id"])
            except ValueError:
                return data
            return {**data, "auth_type": canonical}
        if raw in _LEGACY_AUTH_TYPES:
            return {**data, "auth_type": _LEGACY_AUTH_TYPES[raw]}
        return data

    @model_validator(mode="after")
    def check_canonical_auth_type(self) -> "Account":
        expected = canonical_auth_type(self.provider_id)
        if self.auth_type is not expected:
            raise ValueError(
                f"auth_type '{self.auth_type.value if self.auth_type else None}' "
                f"is not valid for provider '{self.provider_id.value}' "
                f"(expected '{expected.value}')"
            )
        return self

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        cleaned = v.strip()
        if not cleaned:
            raise ValueError("Account id cannot be empty")
        return cleaned

    def display_label(self) -> str:
        """Human-readable label shown next to balances."""
        provider_name = self.provider_id.display_name
        if self.key_preview:
            return f"{provider_name} • {self.key_preview}"
        return provider_name

    @property
    def display_name(self) -> str:
        return self.name or self.display_label()


class Credits(BaseModel):
    """Monetary credits; any subset of the fields may be populated."""

    model_config = ConfigDict(frozen=True)

    total: Decimal | None = None
    used: Decimal | None = None
    remaining: Decimal | None = None


class Tokens(BaseModel):
    """Token counts; any subset of the fields may be populated."""

    model_config = ConfigDict(frozen=True)

    total: int | None = None
    used: int | None = None
    remaining: int | None = None


class Balance(BaseModel):
    model_config = ConfigDict(frozen=True)

    credits: Credits | None = None
    tokens: Tokens | None = None

    @property
    def is_empty(self) -> bool:
        return self.credits is None and self.tokens is None


class BalanceSnapshot(BaseModel):
    """Immutable balance captured by one successful fetch."""

    model_config = ConfigDict(frozen=True)

    account_id: str
    provider_id: ProviderId
    balance: Balance = Field(default_factory=Balance)
    timestamp: float = Field(default_factory=time.time)


class ErrorKind(str, Enum):
    """Failure taxonomy shared by all providers."""

    AUTH_ERROR = "auth_error"
    RATE_LIMITED = "rate_limited"
    NETWORK_ERROR = "network_error"
    PARSE_ERROR = "parse_error"
    UNKNOWN_ERROR = "unknown_error"


class Success(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: Literal["success"] = "success"
    snapshot: BalanceSnapshot
    timestamp: float = Field(default_factory=time.time)

    @property
    def balance(self) -> Balance:
        return self.snapshot.balance


class Failure(BaseModel):
    """A failed refresh attempt, returned as a value rather than raised."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    status: Literal["failure"] = "failure"
    kind: ErrorKind
    message: str
    cause: BaseException | None = Field(default=None, exclude=True, repr=False)
    timestamp: float = Field(default_factory=time.time)

    # ``cause`` is diagnostic only and takes no part in equality.
    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Failure):
            return NotImplemented
        return self._identity() == other._identity()

    def __hash__(self) -> int:
        return hash(self._identity())

    def _identity(self) -> tuple[Any, ...]:
        return (self.kind, self.message, self.timestamp)

    @classmethod
    def auth_error(cls, message: str, **kwargs: Any) -> "Failure":
        return cls(kind=ErrorKind.AUTH_ERROR, message=message, **kwargs)

    @classmethod
    def rate_limited(cls, message: str, **kwargs: Any) -> "Failure":
        return cls(kind=ErrorKind.RATE_LIMITED, message=message, **kwargs)

    @classmethod
    def network_error(cls, message: str, **kwargs: Any) -> "Failure":
        return cls(kind=ErrorKind.NETWORK_ERROR, message=message, **kwargs)

    @classmethod
    def parse_error(cls, message: str, **kwargs: Any) -> "Failure":
        return cls(kind=ErrorKind.PARSE_ERROR, message=message, **kwargs)

    @classmethod
    def unknown_error(cls, message: str, **kwargs: Any) -> "Failure":
        return cls(kind=ErrorKind.UNKNOWN_ERROR, message=message, **kwargs)


ProviderResult = Annotated[Union[Success, Failure], Field(discriminator="status")]
