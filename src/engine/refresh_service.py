"""Balance refresh service: account enumeration, auto-refresh and notifications."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from engine.events import BalanceEventBus, ResultStore
from engine.notifications import LoggingNotifier, Notifier, decide_notification
from engine.refresh_coordinator import RefreshCoordinator
from tokenpulse_client.constants import MISSING_API_KEY_MESSAGE
from tokenpulse_client.models import Account, Failure, ProviderResult
from tokenpulse_client.registry import ProviderRegistry, UnsupportedProviderError
from utils.credentials import CredentialStore, CredentialStoreError
from utils.settings import SettingsStore

LOGGER = logging.getLogger("tokenpulse.refresh")

SECONDS_PER_MINUTE = 60


class BalanceRefreshService:
    """Drives the refresh coordinator across all configured accounts."""

    def __init__(
        self,
        settings: SettingsStore,
        credentials: CredentialStore,
        providers: ProviderRegistry,
        *,
        notifier: Notifier | None = None,
        events: BalanceEventBus | None = None,
        coordinator: RefreshCoordinator | None = None,
        time_provider: Callable[[], float] | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._settings = settings
        self._credentials = credentials
        self._providers = providers
        self._notifier = notifier or LoggingNotifier()
        self.events = events or BalanceEventBus()
        self._time_provider = time_provider or time.time
        self._sleep = sleep
        self._coordinator = coordinator or RefreshCoordinator(
            self._fetch_balance,
            cache_ttl=settings.cache_ttl_seconds,
            time_provider=self._time_provider,
        )
        self._auto_refresh_task: asyncio.Task | None = None

    @property
    def results(self) -> ResultStore:
        return self._coordinator.results

    @property
    def coordinator(self) -> RefreshCoordinator:
        return self._coordinator

    @property
    def auto_refresh_running(self) -> bool:
        task = self._auto_refresh_task
        return task is not None and not task.done()

    def refresh_all(self, force: bool = False) -> list[asyncio.Task]:
        """Refresh every enabled account; returns the fetch tasks started."""
        tasks: list[asyncio.Task] = []
        for account in self._settings.enabled_accounts():
            try:
                task = self.refresh_account(account.id, force=force)
            except Exception:
                LOGGER.exception("Failed to schedule refresh for %s", account.id)
                continue
            if task is not None:
                tasks.append(task)
        return tasks

    def refresh_account(
        self, account_id: str, force: bool = False
    ) -> asyncio.Task | None:
        """Refresh one account by id; unknown ids are ignored."""
        account = self._settings.find_account(account_id)
        if account is None:
            LOGGER.debug("Ignoring refresh for unknown account %s", account_id)
            return None
        if not account.enabled:
            return None

        previous = self.results.get(account_id)

        def on_result(result: ProviderResult) -> None:
            self._handle_result(account, previous, result)

        try:
            secret = self._credentials.get_secret(account.id)
        except CredentialStoreError as exc:
            LOGGER.warning("Credential lookup failed for %s: %s", account.id, exc)
            self._coordinator.publish(
                account,
                Failure.auth_error(
                    str(exc), cause=exc, timestamp=self._time_provider()
                ),
                on_result,
            )
            return None

        if secret is None:
            self._coordinator.publish(
                account,
                Failure.auth_error(
                    MISSING_API_KEY_MESSAGE, timestamp=self._time_provider()
                ),
                on_result,
            )
            return None

        return self._coordinator.refresh_account(
            account, force, on_result, secret=secret
        )

    def restart_auto_refresh(self) -> None:
        """Restart the periodic refresh loop from the current settings."""
        self._cancel_auto_refresh()
        self._coordinator.cache_ttl = self._settings.cache_ttl_seconds
        if not self._settings.auto_refresh_enabled:
            LOGGER.info("Auto-refresh disabled")
            return
        self._auto_refresh_task = asyncio.get_running_loop().create_task(
            self._auto_refresh_loop(), name="tokenpulse:auto-refresh"
        )

    def stop_auto_refresh(self) -> None:
        self._cancel_auto_refresh()

    async def test_credentials(
        self, account_id: str, secret: str | None = None
    ) -> ProviderResult:
        """Run the provider's credential check without touching stored results."""
        account = self._settings.find_account(account_id)
        if account is None:
            raise KeyError(f"Unknown account: {account_id}")
        resolved = secret if secret is not None else self._credentials.get_secret(account_id)
        if resolved is None:
            return Failure.auth_error(
                MISSING_API_KEY_MESSAGE, timestamp=self._time_provider()
            )
        client = self._providers.get_client(account.provider_id)
        return await client.test_credentials(account, resolved)

    def remove_account(self, account_id: str) -> Account | None:
        removed = self._settings.remove_account(account_id)
        self._coordinator.forget(account_id)
        return removed

    async def aclose(self) -> None:
        """Cancel auto-refresh and every outstanding fetch."""
        task = self._cancel_auto_refresh()
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        await self._coordinator.aclose()
        await self.events.aclose()

    async def __aenter__(self) -> "BalanceRefreshService":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    async def _auto_refresh_loop(self) -> None:
        while True:
            self.refresh_all(force=False)
            interval = self._settings.refresh_interval_minutes * SECONDS_PER_MINUTE
            await self._sleep(interval)

    def _cancel_auto_refresh(self) -> asyncio.Task | None:
        task = self._auto_refresh_task
        self._auto_refresh_task = None
        if task is not None and not task.done():
            task.cancel()
        return task

    async def _fetch_balance(self, account: Account, secret: str) -> ProviderResult:
        try:
            client = self._providers.get_client(account.provider_id)
        except UnsupportedProviderError as exc:
            return Failure.unknown_error(
                str(exc), cause=exc, timestamp=self._time_provider()
            )
        return await client.fetch_balance(account, secret)

    def _handle_result(
        self,
        account: Account,
        previous: ProviderResult | None,
        result: ProviderResult,
    ) -> None:
        if isinstance(result, Failure):
            LOGGER.info(
                "Refresh of %s failed (%s): %s",
                account.id,
                result.kind.value,
                result.message,
            )
        else:
            LOGGER.debug("Refreshed %s", account.id)
        self.events.balance_updated(account.id, result)
        notification = decide_notification(account.display_name, previous, result)
        if notification is not None:
            self._notifier.notify(notification)
