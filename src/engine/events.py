"""Observable per-account results and balance-updated events."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from types import MappingProxyType
from typing import Mapping

from tokenpulse_client.models import ProviderResult

LOGGER = logging.getLogger("tokenpulse.events")

ResultsListener = Callable[[Mapping[str, ProviderResult]], None]
BalanceListener = Callable[[str, ProviderResult], Awaitable[None] | None]


class ResultStore:
    """Last known result per account, with broadcast-on-write subscriptions.

    Consumers read through ``get``/``snapshot`` and ``subscribe``; only the
    refresh coordinator writes.
    """

    def __init__(self) -> None:
        self._results: dict[str, ProviderResult] = {}
        self._listeners: list[ResultsListener] = []

    def get(self, account_id: str) -> ProviderResult | None:
        return self._results.get(account_id)

    def snapshot(self) -> Mapping[str, ProviderResult]:
        return MappingProxyType(dict(self._results))

    def subscribe(self, listener: ResultsListener) -> Callable[[], None]:
        """Register ``listener``; it receives the current snapshot immediately."""
        self._listeners.append(listener)
        self._notify(listener, self.snapshot())

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def __contains__(self, account_id: object) -> bool:
        return account_id in self._results

    def __len__(self) -> int:
        return len(self._results)

    def _set(self, account_id: str, result: ProviderResult) -> None:
        self._results[account_id] = result
        self._broadcast()

    def _discard(self, account_id: str) -> None:
        if self._results.pop(account_id, None) is not None:
            self._broadcast()

    def _broadcast(self) -> None:
        current = self.snapshot()
        for listener in list(self._listeners):
            self._notify(listener, current)

    @staticmethod
    def _notify(
        listener: ResultsListener, current: Mapping[str, ProviderResult]
    ) -> None:
        try:
            listener(current)
        except Exception:
            LOGGER.exception("Results listener failed")


class BalanceEventBus:
    """Fan-out of ``balance_updated(account_id, result)`` events."""

    def __init__(self) -> None:
        self._listeners: list[BalanceListener] = []
        self._pending: set[asyncio.Task] = set()

    def subscribe(self, listener: BalanceListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def balance_updated(self, account_id: str, result: ProviderResult) -> None:
        for listener in list(self._listeners):
            try:
                outcome = listener(account_id, result)
            except Exception:
                LOGGER.exception("balance_updated listener failed for %s", account_id)
                continue
            if asyncio.iscoroutine(outcome):
                task = asyncio.get_running_loop().create_task(outcome)
                self._pending.add(task)
                task.add_done_callback(self._listener_done)

    def _listener_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.error("balance_updated listener failed: %s", exc, exc_info=exc)

    async def aclose(self) -> None:
        pending = list(self._pending)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._pending.clear()
