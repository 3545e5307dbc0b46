"""Configuration validation utilities for TokenPulse settings."""

from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation
from typing import Any

from tokenpulse_client.models import AuthType, ProviderId, canonical_auth_type

MIN_REFRESH_INTERVAL_MINUTES = 1
MAX_REFRESH_INTERVAL_MINUTES = 24 * 60
LEGACY_AUTH_TYPES = {AuthType.OPENROUTER_API_KEY.value}


class ConfigValidationError(ValueError):
    """Raised when configuration validation fails."""


def validate_positive_decimal(
    config: dict[str, Any], field: str, *, required: bool = True
) -> None:
    """Validate that a field is a positive decimal value."""
    if field not in config:
        if required:
            raise ConfigValidationError(f"Missing required field: {field}")
        return

    value = config[field]
    if isinstance(value, bool):
        raise ConfigValidationError(f"{field} must be a valid number, got: {value}")
    try:
        decimal_value = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError) as exc:
        raise ConfigValidationError(
            f"{field} must be a valid number, got: {value}"
        ) from exc

    if decimal_value <= 0:
        raise ConfigValidationError(f"{field} must be positive, got: {decimal_value}")


def validate_positive_integer(
    config: dict[str, Any],
    field: str,
    *,
    required: bool = True,
    minimum: int = 1,
    maximum: int | None = None,
) -> None:
    """Validate that a field is an integer within bounds."""
    if field not in config:
        if required:
            raise ConfigValidationError(f"Missing required field: {field}")
        return

    value = config[field]
    if not isinstance(value, int) or isinstance(value, bool):
        raise ConfigValidationError(
            f"{field} must be an integer, got: {type(value).__name__}"
        )

    if value < minimum:
        raise ConfigValidationError(f"{field} must be >= {minimum}, got: {value}")
    if maximum is not None and value > maximum:
        raise ConfigValidationError(f"{field} must be <= {maximum}, got: {value}")


def validate_bool(config: dict[str, Any], field: str) -> None:
    if field in config and not isinstance(config[field], bool):
        raise ConfigValidationError(f"{field} must be a boolean if provided.")


def validate_choice(
    config: dict[str, Any], field: str, choices: set[str], *, required: bool = True
) -> None:
    """Validate that a field is one of the allowed choices."""
    if field not in config:
        if required:
            raise ConfigValidationError(f"Missing required field: {field}")
        return

    value = config[field]
    if not isinstance(value, str):
        raise ConfigValidationError(
            f"{field} must be a string, got: {type(value).__name__}"
        )

    if value not in choices:
        choices_str = ", ".join(sorted(choices))
        raise ConfigValidationError(
            f"{field} must be one of [{choices_str}], got: {value}"
        )


def validate_url(config: dict[str, Any], field: str = "base_url") -> None:
    """Validate that a URL field is properly formatted."""
    if field not in config:
        return

    url = config[field]
    if not isinstance(url, str) or not url.strip():
        raise ConfigValidationError(f"{field} must be a non-empty string")

    if not re.match(r"^https?://", url, re.IGNORECASE):
        raise ConfigValidationError(
            f"{field} must start with http:// or https://, got: {url}"
        )


def validate_account(entry: Any, index: int) -> None:
    """Validate one account entry, including its canonical auth type."""
    if not isinstance(entry, dict):
        raise ConfigValidationError(f"accounts[{index}] must be a mapping")

    account_id = entry.get("id")
    if not isinstance(account_id, str) or not account_id.strip():
        raise ConfigValidationError(f"accounts[{index}].id must be a non-empty string")

    providers = {provider.value for provider in ProviderId}
    try:
        validate_choice(entry, "provider_id", providers)
    except ConfigValidationError as exc:
        raise ConfigValidationError(f"accounts[{index}]: {exc}") from exc

    auth_type = entry.get("auth_type")
    if auth_type is not None:
        expected = canonical_auth_type(entry["provider_id"]).value
        if auth_type != expected and not (
            expected == AuthType.OPENROUTER_PROVISIONING_KEY.value
            and auth_type in LEGACY_AUTH_TYPES
        ):
            raise ConfigValidationError(
                f"accounts[{index}].auth_type '{auth_type}' is not valid for "
                f"provider '{entry['provider_id']}' (expected '{expected}')"
            )

    validate_bool(entry, "enabled")
    for field in ("name", "key_preview"):
        if field in entry and not isinstance(entry[field], str):
            raise ConfigValidationError(f"accounts[{index}].{field} must be a string")


def validate_provider_overrides(providers: Any) -> None:
    if not isinstance(providers, dict):
        raise ConfigValidationError("providers must be a mapping of provider id to options")
    known = {provider.value for provider in ProviderId}
    for provider_id, options in providers.items():
        if provider_id not in known:
            choices_str = ", ".join(sorted(known))
            raise ConfigValidationError(
                f"providers has unknown provider '{provider_id}' (expected one of [{choices_str}])"
            )
        if not isinstance(options, dict):
            raise ConfigValidationError(f"providers.{provider_id} must be a mapping")
        validate_url(options)
        for field in ("timeout_sec", "connect_timeout_sec", "read_timeout_sec"):
            validate_positive_decimal(options, field, required=False)
        validate_bool(options, "verify_ssl")


def validate_settings(config: dict[str, Any]) -> None:
    """
    Validate a TokenPulse settings mapping.

    Args:
        config: Settings dictionary loaded from JSON/TOML/YAML

    Raises:
        ConfigValidationError: If the settings are invalid
    """
    if not isinstance(config, dict):
        raise ConfigValidationError("Configuration must be a dictionary")

    accounts = config.get("accounts", [])
    if not isinstance(accounts, list):
        raise ConfigValidationError("accounts must be a list")
    seen: set[str] = set()
    for index, entry in enumerate(accounts):
        validate_account(entry, index)
        account_id = entry["id"].strip()
        if account_id in seen:
            raise ConfigValidationError(f"Duplicate account id: {account_id}")
        seen.add(account_id)

    validate_positive_integer(
        config,
        "refresh_interval_minutes",
        required=False,
        minimum=MIN_REFRESH_INTERVAL_MINUTES,
        maximum=MAX_REFRESH_INTERVAL_MINUTES,
    )
    validate_positive_decimal(config, "cache_ttl_seconds", required=False)
    validate_bool(config, "auto_refresh_enabled")
    if "providers" in config:
        validate_provider_overrides(config["providers"])
