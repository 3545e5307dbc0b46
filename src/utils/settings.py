"""Settings model, persistence and the account registry."""

from __future__ import annotations

import importlib.util
import json
import logging
import sys
from pathlib import Path
from typing import Any, Iterable

from pydantic import BaseModel, ConfigDict, Field

from tokenpulse_client.models import Account, generate_key_preview
from utils.config_validator import ConfigValidationError, validate_settings
from utils.credentials import CredentialStore

LOGGER = logging.getLogger("tokenpulse.settings")

SUPPORTED_FORMATS = (".json", ".toml", ".yaml", ".yml")
# TOML is read-only.
WRITABLE_FORMATS = (".json", ".yaml", ".yml")
DEFAULT_REFRESH_INTERVAL_MINUTES = 15
DEFAULT_CACHE_TTL_SECONDS = 60.0


class Settings(BaseModel):
    """Persisted TokenPulse configuration."""

    model_config = ConfigDict(frozen=True)

    accounts: tuple[Account, ...] = ()
    refresh_interval_minutes: int = DEFAULT_REFRESH_INTERVAL_MINUTES
    auto_refresh_enabled: bool = True
    cache_ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS
    providers: dict[str, dict[str, Any]] = Field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


def load_config(config_path: Path) -> dict[str, Any]:
    if not config_path.exists():
        raise FileNotFoundError(
            f"Config file not found: {config_path}. Ensure the path is correct and readable."
        )
    suffix = config_path.suffix.lower()
    if suffix not in SUPPORTED_FORMATS:
        supported = ", ".join(SUPPORTED_FORMATS)
        raise ValueError(
            f"Unsupported config format '{suffix}'. Supported formats: {supported}."
        )
    try:
        if suffix == ".json":
            data = json.loads(config_path.read_text(encoding="utf-8"))
        elif suffix == ".toml":
            data = load_toml(config_path)
        else:
            data = load_yaml(config_path)
    except json.JSONDecodeError as exc:
        raise ValueError(
            f"Invalid JSON in config file {config_path}: {exc}. Validate the file format."
        ) from exc
    except (RuntimeError, ValueError):
        raise
    except Exception as exc:
        raise RuntimeError(
            f"Failed to parse config file {config_path}: {exc}."
        ) from exc
    if not isinstance(data, dict):
        raise ValueError(
            f"Config file {config_path} must contain a JSON/TOML/YAML object mapping."
        )
    return data


def load_toml(config_path: Path) -> dict[str, Any]:
    if sys.version_info >= (3, 11):
        import tomllib

        return tomllib.loads(config_path.read_text(encoding="utf-8"))
    if importlib.util.find_spec("tomli") is None:
        raise RuntimeError(
            "TOML config parsing requires Python 3.11+ or the 'tomli' package. Install tomli or use JSON/YAML."
        )
    import tomli  # type: ignore[import-not-found]

    return tomli.loads(config_path.read_text(encoding="utf-8"))


def load_yaml(config_path: Path) -> dict[str, Any]:
    import yaml

    data = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(
            f"YAML config file {config_path} must contain a mapping at the top level."
        )
    return data


def parse_settings(config: dict[str, Any]) -> Settings:
    """Validate a raw mapping and build ``Settings`` from it."""
    validate_settings(config)
    try:
        return Settings.model_validate(config)
    except ValueError as exc:
        raise ConfigValidationError(str(exc)) from exc


def load_settings(config_path: Path) -> Settings:
    return parse_settings(load_config(config_path))


def ensure_writable(config_path: Path) -> None:
    """Raise ``ValueError`` when settings cannot be written back to ``config_path``."""
    suffix = config_path.suffix.lower()
    if suffix not in WRITABLE_FORMATS:
        raise ValueError(
            f"Cannot write settings as '{suffix}'. Use a .json, .yaml or .yml path."
        )


def save_settings(config_path: Path, settings: Settings) -> None:
    """Write settings as JSON or YAML, chosen by the file suffix."""
    ensure_writable(config_path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    payload = settings.to_payload()
    if config_path.suffix.lower() == ".json":
        text = json.dumps(payload, indent=2, sort_keys=True)
    else:
        import yaml

        text = yaml.safe_dump(payload, sort_keys=False)
    config_path.write_text(text, encoding="utf-8")


class SettingsStore:
    """Holds the current settings and acts as the account registry."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        path: Path | None = None,
        credentials: CredentialStore | None = None,
    ) -> None:
        self._settings = settings or Settings()
        self.path = path
        self._credentials = credentials

    @classmethod
    def from_path(
        cls, path: Path, *, credentials: CredentialStore | None = None
    ) -> "SettingsStore":
        return cls(load_settings(path), path=path, credentials=credentials)

    @property
    def state(self) -> Settings:
        return self._settings

    @property
    def credentials(self) -> CredentialStore | None:
        return self._credentials

    @property
    def accounts(self) -> tuple[Account, ...]:
        return self._settings.accounts

    @property
    def refresh_interval_minutes(self) -> int:
        return self._settings.refresh_interval_minutes

    @property
    def auto_refresh_enabled(self) -> bool:
        return self._settings.auto_refresh_enabled

    @property
    def cache_ttl_seconds(self) -> float:
        return self._settings.cache_ttl_seconds

    def enabled_accounts(self) -> list[Account]:
        return [account for account in self.accounts if account.enabled]

    def find_account(self, account_id: str) -> Account | None:
        for account in self.accounts:
            if account.id == account_id:
                return account
        return None

    def update(self, **changes: Any) -> Settings:
        """Replace top-level settings fields, re-validating the result."""
        payload = self._settings.to_payload()
        payload.update(
            {
                key: [account.model_dump(mode="json") for account in value]
                if key == "accounts"
                else value
                for key, value in changes.items()
            }
        )
        self._settings = parse_settings(payload)
        return self._settings

    def add_account(self, account: Account) -> None:
        if self.find_account(account.id) is not None:
            raise ValueError(f"Account '{account.id}' already exists")
        self.update(accounts=[*self.accounts, account])

    def update_account(self, account: Account) -> None:
        if self.find_account(account.id) is None:
            raise KeyError(account.id)
        self.update(accounts=_replace(self.accounts, account))

    def remove_account(self, account_id: str) -> Account | None:
        """Remove an account and its stored secret.

        With a backing file the removal is saved first; the keychain entry is
        only deleted once that write succeeded.
        """
        account = self.find_account(account_id)
        if account is None:
            return None
        previous = self._settings
        self.update(
            accounts=[item for item in self.accounts if item.id != account_id]
        )
        self._persist(previous)
        if self._credentials is not None:
            self._credentials.remove_secret(account_id)
        LOGGER.info("Removed account %s", account_id)
        return account

    def save_secret(self, account_id: str, secret: str) -> Account:
        """Store ``secret`` for an account and record its key preview.

        The preview is saved before the keychain is touched. A keychain
        failure restores the previous settings.
        """
        account = self.find_account(account_id)
        if account is None:
            raise KeyError(account_id)
        if self._credentials is None:
            raise RuntimeError("No credential store configured.")
        cleaned = secret.strip()
        if not cleaned:
            raise ValueError("Secret cannot be empty.")
        previous = self._settings
        updated = account.model_copy(
            update={"key_preview": generate_key_preview(cleaned)}
        )
        self.update_account(updated)
        self._persist(previous)
        try:
            self._credentials.save_secret(account_id, cleaned)
        except Exception:
            self._settings = previous
            if self.path is not None:
                self.save()
            raise
        return updated

    def save(self) -> None:
        if self.path is None:
            raise RuntimeError("Settings have no backing file to save to.")
        save_settings(self.path, self._settings)

    def _persist(self, previous: Settings) -> None:
        if self.path is None:
            return
        try:
            self.save()
        except Exception:
            self._settings = previous
            raise


def _replace(accounts: Iterable[Account], updated: Account) -> list[Account]:
    return [updated if account.id == updated.id else account for account in accounts]
