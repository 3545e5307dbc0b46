"""Credential storage for TokenPulse accounts."""

from __future__ import annotations

import os
import re

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

DEFAULT_SERVICE_NAME = "tokenpulse"
SECRET_ENV_PREFIX = "TOKENPULSE_SECRET_"
_ENV_UNSAFE = re.compile(r"[^A-Z0-9_]")


class CredentialStoreError(RuntimeError):
    """Raised when the OS keychain cannot be used."""


def secret_env_var(account_id: str) -> str:
    """Name of the environment variable that overrides an account secret."""
    return SECRET_ENV_PREFIX + _ENV_UNSAFE.sub("_", account_id.upper())


class CredentialStore:
    """Per-account secrets in the OS keychain via keyring.

    An environment variable ``TOKENPULSE_SECRET_<ACCOUNT_ID>`` takes
    precedence over the keychain, for headless runs.
    """

    def __init__(self, service_name: str = DEFAULT_SERVICE_NAME) -> None:
        self.service_name = service_name

    def get_secret(self, account_id: str) -> str | None:
        """Return the stored secret, or ``None`` when none is stored."""
        env_value = _clean_value(os.getenv(secret_env_var(account_id)))
        if env_value:
            return env_value
        try:
            return _clean_value(keyring.get_password(self.service_name, account_id))
        except KeyringError as exc:
            raise CredentialStoreError(
                "Failed to access the OS keychain. "
                "Ensure a keyring backend is available."
            ) from exc

    def save_secret(self, account_id: str, secret: str) -> None:
        value = _clean_value(secret)
        if not value:
            raise ValueError("secret must be a non-empty string.")
        try:
            keyring.set_password(self.service_name, account_id, value)
        except KeyringError as exc:
            raise CredentialStoreError(
                "Failed to store credentials in the OS keychain. "
                "Ensure a keyring backend is available."
            ) from exc

    def remove_secret(self, account_id: str) -> None:
        try:
            keyring.delete_password(self.service_name, account_id)
        except PasswordDeleteError:
            return
        except KeyringError as exc:
            raise CredentialStoreError(
                "Failed to remove credentials from the OS keychain."
            ) from exc


def _clean_value(value: str | None) -> str | None:
    if value is None:
        return None
    candidate = value.strip()
    return candidate or None
