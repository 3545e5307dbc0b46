"""Per-account refresh coordination: TTL caching and single-flight fetches.

For every account id the coordinator keeps at most one outstanding fetch task.
Non-forced requests are coalesced into a running fetch or served from a fresh
cached ``Success``; forced requests always start a new fetch and pre-empt the
running one. Each launch takes a new issue number, and only the task holding
the latest number for its account may write the result.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from engine.events import ResultStore
from tokenpulse_client.models import Account, Failure, ProviderResult, Success

LOGGER = logging.getLogger("tokenpulse.coordinator")

DEFAULT_CACHE_TTL_SECONDS = 60.0

Fetcher = Callable[[Account, Any], Awaitable[ProviderResult]]
ResultCallback = Callable[[ProviderResult], None]


class RefreshCoordinator:
    """Owns the result registry and the in-flight task registry."""

    def __init__(
        self,
        fetcher: Fetcher,
        *,
        cache_ttl: float = DEFAULT_CACHE_TTL_SECONDS,
        time_provider: Callable[[], float] | None = None,
        results: ResultStore | None = None,
    ) -> None:
        if cache_ttl < 0:
            raise ValueError("cache_ttl must be non-negative")
        self._fetcher = fetcher
        self.cache_ttl = cache_ttl
        self._time_provider = time_provider or time.time
        self._results = results if results is not None else ResultStore()
        self._active: dict[str, asyncio.Task] = {}
        self._issued: dict[str, int] = {}

    @property
    def results(self) -> ResultStore:
        return self._results

    def refresh_account(
        self,
        account: Account,
        force: bool = False,
        on_result: ResultCallback | None = None,
        *,
        secret: Any = None,
    ) -> asyncio.Task | None:
        """Start a fetch for ``account`` unless it can be coalesced or cached.

        Returns the launched task, or ``None`` when the call was a no-op.
        Must be called from a running event loop.
        """
        if not account.enabled:
            LOGGER.debug("Skipping refresh of disabled account %s", account.id)
            return None

        current = self._active.get(account.id)
        if not force and current is not None and not current.done():
            LOGGER.debug("Coalescing refresh of %s into running fetch", account.id)
            return None

        if not force and self.is_fresh(account.id):
            LOGGER.debug("Serving %s from cache", account.id)
            return None

        if current is not None and not current.done():
            LOGGER.debug("Pre-empting running fetch of %s", account.id)
            current.cancel()

        issue = self._next_issue(account.id)
        task = asyncio.get_running_loop().create_task(
            self._run(account, secret, issue, on_result),
            name=f"refresh:{account.id}:{issue}",
        )
        self._active[account.id] = task
        task.add_done_callback(lambda done: self._clear_active(account.id, done))
        return task

    def publish(
        self,
        account: Account,
        result: ProviderResult,
        on_result: ResultCallback | None = None,
    ) -> None:
        """Record a result produced without a fetch, superseding any running one."""
        current = self._active.pop(account.id, None)
        if current is not None and not current.done():
            current.cancel()
        self._next_issue(account.id)
        self._results._set(account.id, result)
        self._invoke(on_result, account.id, result)

    def is_fresh(self, account_id: str) -> bool:
        cached = self._results.get(account_id)
        if not isinstance(cached, Success):
            return False
        age = self._time_provider() - cached.snapshot.timestamp
        return age < self.cache_ttl

    def is_refreshing(self, account_id: str) -> bool:
        task = self._active.get(account_id)
        return task is not None and not task.done()

    def in_flight(self) -> list[str]:
        return [account_id for account_id in self._active if self.is_refreshing(account_id)]

    def forget(self, account_id: str) -> None:
        """Drop all state for a removed account."""
        task = self._active.pop(account_id, None)
        if task is not None and not task.done():
            task.cancel()
        self._next_issue(account_id)
        self._results._discard(account_id)

    async def aclose(self) -> None:
        """Cancel every outstanding fetch and wait for them to finish."""
        tasks = [task for task in self._active.values() if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._active.clear()

    def _next_issue(self, account_id: str) -> int:
        issue = self._issued.get(account_id, 0) + 1
        self._issued[account_id] = issue
        return issue

    async def _run(
        self,
        account: Account,
        secret: Any,
        issue: int,
        on_result: ResultCallback | None,
    ) -> ProviderResult:
        try:
            result = await self._fetcher(account, secret)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            LOGGER.exception("Unexpected error refreshing account %s", account.id)
            result = Failure.unknown_error(
                f"Unexpected error: {exc}",
                cause=exc,
                timestamp=self._time_provider(),
            )

        if self._issued.get(account.id) != issue:
            LOGGER.debug("Discarding stale result for %s (issue %s)", account.id, issue)
            return result

        self._results._set(account.id, result)
        self._invoke(on_result, account.id, result)
        return result

    def _clear_active(self, account_id: str, task: asyncio.Task) -> None:
        if self._active.get(account_id) is task:
            del self._active[account_id]

    @staticmethod
    def _invoke(
        on_result: ResultCallback | None, account_id: str, result: ProviderResult
    ) -> None:
        if on_result is None:
            return
        try:
            on_result(result)
        except Exception:
            LOGGER.exception("Result callback failed for account %s", account_id)
