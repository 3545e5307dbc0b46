"""CLI entry point for TokenPulse."""

from __future__ import annotations

import argparse
import asyncio
import getpass
import logging
import sys
from pathlib import Path
from typing import Iterable, Mapping, TextIO

import aiohttp

from engine.provider_factory import build_provider_registry
from engine.refresh_service import BalanceRefreshService
from tokenpulse_client.models import Account, ProviderResult, Success
from utils.balance_formatter import format_result
from utils.credentials import CredentialStore
from utils.logging_config import LogContext, setup_logging
from utils.settings import SettingsStore

LOGGER = logging.getLogger("tokenpulse.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="TokenPulse balance tracker CLI")
    parser.add_argument("--version", action="version", version="tokenpulse 0.1.0")
    subparsers = parser.add_subparsers(dest="command", required=True)

    refresh_parser = subparsers.add_parser(
        "refresh", help="Refresh every enabled account once and print balances."
    )
    add_common_arguments(refresh_parser)
    refresh_parser.add_argument(
        "--force",
        action="store_true",
        help="Bypass the cache and always call the provider.",
    )
    refresh_parser.set_defaults(handler=run_refresh)

    watch_parser = subparsers.add_parser(
        "watch", help="Keep refreshing on the configured interval until interrupted."
    )
    add_common_arguments(watch_parser)
    watch_parser.set_defaults(handler=run_watch)

    store_parser = subparsers.add_parser(
        "store-key", help="Store an account secret in the OS keychain."
    )
    add_common_arguments(store_parser, account=True)
    store_parser.add_argument(
        "--secret",
        help="Secret value (prompted for when omitted).",
    )
    store_parser.set_defaults(handler=run_store_key)

    test_parser = subparsers.add_parser(
        "test-key", help="Check that the stored secret is accepted by the provider."
    )
    add_common_arguments(test_parser, account=True)
    test_parser.set_defaults(handler=run_test_key)

    remove_parser = subparsers.add_parser(
        "remove-account", help="Remove an account and its stored secret."
    )
    add_common_arguments(remove_parser, account=True)
    remove_parser.set_defaults(handler=run_remove_account)
    return parser


def add_common_arguments(
    parser: argparse.ArgumentParser, *, account: bool = False
) -> None:
    parser.add_argument(
        "--config", required=True, help="Path to JSON/TOML/YAML settings file."
    )
    if account:
        parser.add_argument("--account", required=True, help="Account id.")
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level (DEBUG, INFO, WARNING, ERROR).",
    )


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if hasattr(args, "handler"):
        return args.handler(args)
    parser.print_help()
    return 1


def run_refresh(args: argparse.Namespace) -> int:
    configure_logging(args.log_level)
    try:
        store = open_settings(args.config)
        with LogContext(command="refresh"):
            return asyncio.run(refresh_once(store, force=args.force))
    except (FileNotFoundError, RuntimeError, ValueError) as exc:
        LOGGER.error(str(exc))
        return 2
    except Exception as exc:  # pragma: no cover - safeguard for unexpected issues.
        LOGGER.exception("Unexpected error during refresh: %s", exc)
        return 3


def run_watch(args: argparse.Namespace) -> int:
    configure_logging(args.log_level)
    try:
        store = open_settings(args.config)
        if not store.auto_refresh_enabled:
            LOGGER.error(
                "Auto-refresh is disabled in %s. Enable auto_refresh_enabled or use 'refresh'.",
                args.config,
            )
            return 2
        with LogContext(command="watch"):
            asyncio.run(watch(store))
    except KeyboardInterrupt:
        LOGGER.info("Stopped watching")
    except (FileNotFoundError, RuntimeError, ValueError) as exc:
        LOGGER.error(str(exc))
        return 2
    except Exception as exc:  # pragma: no cover - safeguard for unexpected issues.
        LOGGER.exception("Unexpected error while watching: %s", exc)
        return 3
    return 0


def run_store_key(args: argparse.Namespace) -> int:
    configure_logging(args.log_level)
    try:
        store = open_settings(args.config)
        account = resolve_account(store, args.account)
        secret = args.secret or getpass.getpass(
            f"Secret for {account.display_name}: "
        )
        store_credentials(store, account, secret)
        LOGGER.info("Stored secret for %s", account.display_name)
    except (FileNotFoundError, RuntimeError, ValueError) as exc:
        LOGGER.error(str(exc))
        return 2
    except Exception as exc:  # pragma: no cover - safeguard for unexpected issues.
        LOGGER.exception("Unexpected error storing secret: %s", exc)
        return 3
    return 0


def run_test_key(args: argparse.Namespace) -> int:
    configure_logging(args.log_level)
    try:
        store = open_settings(args.config)
        account = resolve_account(store, args.account)
        result = asyncio.run(check_key(store, account))
    except (FileNotFoundError, RuntimeError, ValueError) as exc:
        LOGGER.error(str(exc))
        return 2
    except Exception as exc:  # pragma: no cover - safeguard for unexpected issues.
        LOGGER.exception("Unexpected error testing credentials: %s", exc)
        return 3
    print(f"{account.display_name}: {format_result(result)}")
    return 0 if isinstance(result, Success) else 1


def run_remove_account(args: argparse.Namespace) -> int:
    configure_logging(args.log_level)
    try:
        store = open_settings(args.config)
        account = resolve_account(store, args.account)
        store.remove_account(account.id)
    except (FileNotFoundError, RuntimeError, ValueError) as exc:
        LOGGER.error(str(exc))
        return 2
    except Exception as exc:  # pragma: no cover - safeguard for unexpected issues.
        LOGGER.exception("Unexpected error removing account: %s", exc)
        return 3
    return 0


def configure_logging(level: str) -> None:
    """Configure logging with sanitization and proper formatting."""
    setup_logging(level=level, sanitize=True, structured=False)


def open_settings(
    config: str, credentials: CredentialStore | None = None
) -> SettingsStore:
    config_path = Path(config).expanduser()
    return SettingsStore.from_path(
        config_path, credentials=credentials or CredentialStore()
    )


def resolve_account(store: SettingsStore, account_id: str) -> Account:
    account = store.find_account(account_id.strip())
    if account is None:
        known = ", ".join(sorted(item.id for item in store.accounts)) or "none"
        raise ValueError(f"Unknown account '{account_id}'. Known accounts: {known}.")
    return account


def store_credentials(store: SettingsStore, account: Account, secret: str) -> None:
    """Save ``secret`` and refresh the account's key preview."""
    store.save_secret(account.id, secret)


def credentials_for(store: SettingsStore) -> CredentialStore:
    return store.credentials or CredentialStore()


async def refresh_once(
    store: SettingsStore, *, force: bool = False, stream: TextIO | None = None
) -> int:
    """Refresh all enabled accounts; 0 when every one succeeded, else 1."""
    async with aiohttp.ClientSession() as session:
        providers = build_provider_registry(store.state.providers, session=session)
        async with BalanceRefreshService(
            store, credentials_for(store), providers
        ) as service:
            tasks = service.refresh_all(force=force)
            if tasks:
                await asyncio.gather(*tasks, return_exceptions=True)
            accounts = store.enabled_accounts()
            results = service.results.snapshot()
    print_results(accounts, results, stream=stream)
    if all(isinstance(results.get(account.id), Success) for account in accounts):
        return 0
    return 1


async def watch(store: SettingsStore) -> None:
    async with aiohttp.ClientSession() as session:
        providers = build_provider_registry(store.state.providers, session=session)
        async with BalanceRefreshService(
            store, credentials_for(store), providers
        ) as service:
            service.events.subscribe(
                lambda account_id, result: LOGGER.info(
                    "%s: %s", account_id, format_result(result)
                )
            )
            service.restart_auto_refresh()
            LOGGER.info(
                "Refreshing %d account(s) every %d minute(s)",
                len(store.enabled_accounts()),
                store.refresh_interval_minutes,
            )
            await asyncio.Event().wait()


async def check_key(store: SettingsStore, account: Account) -> ProviderResult:
    async with aiohttp.ClientSession() as session:
        providers = build_provider_registry(store.state.providers, session=session)
        service = BalanceRefreshService(store, credentials_for(store), providers)
        try:
            return await service.test_credentials(account.id)
        finally:
            await service.aclose()


def print_results(
    accounts: Iterable[Account],
    results: Mapping[str, ProviderResult],
    *,
    stream: TextIO | None = None,
) -> None:
    stream = stream or sys.stdout
    rows = [
        (account.display_name, format_result(results.get(account.id)))
        for account in accounts
    ]
    if not rows:
        print("No enabled accounts.", file=stream)
        return
    width = max(len(name) for name, _ in rows)
    for name, rendered in rows:
        print(f"{name.ljust(width)}  {rendered}", file=stream)


if __name__ == "__main__":
    raise SystemExit(main())
