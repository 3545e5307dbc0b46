"""Tests for per-account single-flight refresh and TTL caching."""

from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest

from engine.refresh_coordinator import RefreshCoordinator
from tokenpulse_client.models import (
    Account,
    Balance,
    BalanceSnapshot,
    Credits,
    ErrorKind,
    Failure,
    ProviderId,
    Success,
)


class ManualClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class GatedFetcher:
    """Fetcher that blocks every call until released (or returns at once)."""

    def __init__(self, clock: ManualClock, *, blocking: bool = True) -> None:
        self.clock = clock
        self.blocking = blocking
        self.calls: list[tuple[str, object]] = []
        self.gates: list[asyncio.Event] = []
        self.cancelled = 0

    async def __call__(self, account: Account, secret: object) -> Success:
        number = len(self.calls) + 1
        self.calls.append((account.id, secret))
        gate = asyncio.Event()
        self.gates.append(gate)
        if self.blocking:
            try:
                await gate.wait()
            except asyncio.CancelledError:
                self.cancelled += 1
                raise
        return make_success(account, self.clock(), Decimal(number))

    def release(self, index: int = -1) -> None:
        self.gates[index].set()


def make_account(**overrides: object) -> Account:
    fields = {"id": "acct-1", "name": "Work", "provider_id": ProviderId.OPENROUTER}
    fields.update(overrides)
    return Account(**fields)


def make_success(account: Account, timestamp: float, remaining: Decimal) -> Success:
    return Success(
        snapshot=BalanceSnapshot(
            account_id=account.id,
            provider_id=account.provider_id,
            balance=Balance(credits=Credits(remaining=remaining)),
            timestamp=timestamp,
        ),
        timestamp=timestamp,
    )


@pytest.mark.asyncio
async def test_concurrent_refreshes_share_one_fetch() -> None:
    clock = ManualClock()
    fetcher = GatedFetcher(clock)
    coordinator = RefreshCoordinator(fetcher, cache_ttl=60, time_provider=clock)
    account = make_account()

    tasks = [coordinator.refresh_account(account, secret="key") for _ in range(5)]

    assert tasks[0] is not None
    assert tasks[1:] == [None] * 4
    assert coordinator.is_refreshing(account.id)
    assert coordinator.in_flight() == [account.id]

    await asyncio.sleep(0)
    fetcher.release(0)
    await tasks[0]

    assert fetcher.calls == [(account.id, "key")]
    assert isinstance(coordinator.results.get(account.id), Success)
    assert not coordinator.is_refreshing(account.id)


@pytest.mark.asyncio
async def test_fresh_success_is_served_from_cache_until_ttl() -> None:
    clock = ManualClock()
    fetcher = GatedFetcher(clock, blocking=False)
    coordinator = RefreshCoordinator(fetcher, cache_ttl=60, time_provider=clock)
    account = make_account()

    await coordinator.refresh_account(account)
    clock.advance(59.9)
    assert coordinator.refresh_account(account) is None
    assert len(fetcher.calls) == 1

    clock.advance(0.1)
    task = coordinator.refresh_account(account)
    assert task is not None
    await task
    assert len(fetcher.calls) == 2


@pytest.mark.asyncio
async def test_cached_failure_does_not_suppress_refresh() -> None:
    clock = ManualClock()
    coordinator = RefreshCoordinator(
        GatedFetcher(clock, blocking=False), cache_ttl=60, time_provider=clock
    )
    account = make_account()
    coordinator.publish(account, Failure.network_error("offline", timestamp=clock()))

    task = coordinator.refresh_account(account)

    assert task is not None
    await task
    assert isinstance(coordinator.results.get(account.id), Success)


@pytest.mark.asyncio
async def test_force_bypasses_fresh_cache() -> None:
    clock = ManualClock()
    fetcher = GatedFetcher(clock, blocking=False)
    coordinator = RefreshCoordinator(fetcher, cache_ttl=60, time_provider=clock)
    account = make_account()

    await coordinator.refresh_account(account)
    await coordinator.refresh_account(account, force=True)

    assert len(fetcher.calls) == 2
    result = coordinator.results.get(account.id)
    assert isinstance(result, Success)
    assert result.balance.credits.remaining == Decimal(2)


@pytest.mark.asyncio
async def test_force_preempts_in_flight_fetch() -> None:
    clock = ManualClock()
    fetcher = GatedFetcher(clock)
    coordinator = RefreshCoordinator(fetcher, cache_ttl=60, time_provider=clock)
    account = make_account()
    delivered: list[object] = []

    first = coordinator.refresh_account(account, on_result=delivered.append)
    await asyncio.sleep(0)
    second = coordinator.refresh_account(
        account, force=True, on_result=delivered.append
    )
    assert second is not None and second is not first

    with pytest.raises(asyncio.CancelledError):
        await first
    await asyncio.sleep(0)
    fetcher.release(1)
    await second

    assert len(fetcher.calls) == 2
    assert fetcher.cancelled == 1
    assert len(delivered) == 1
    assert coordinator.results.get(account.id).balance.credits.remaining == Decimal(2)


@pytest.mark.asyncio
async def test_preempted_result_that_arrives_late_is_discarded() -> None:
    clock = ManualClock()
    account = make_account()
    release_stale = asyncio.Event()
    calls = 0

    async def stubborn_fetcher(account: Account, secret: object) -> Success:
        nonlocal calls
        calls += 1
        if calls == 1:
            # Finishes anyway after being cancelled.
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                await release_stale.wait()
            return make_success(account, clock(), Decimal("111"))
        return make_success(account, clock(), Decimal("222"))

    coordinator = RefreshCoordinator(stubborn_fetcher, time_provider=clock)
    delivered: list[object] = []

    stale = coordinator.refresh_account(account, on_result=delivered.append)
    await asyncio.sleep(0)
    fresh = coordinator.refresh_account(
        account, force=True, on_result=delivered.append
    )
    await fresh
    release_stale.set()
    await stale

    assert coordinator.results.get(account.id).balance.credits.remaining == Decimal(
        "222"
    )
    assert len(delivered) == 1


@pytest.mark.asyncio
async def test_disabled_account_is_never_fetched() -> None:
    clock = ManualClock()
    fetcher = GatedFetcher(clock, blocking=False)
    coordinator = RefreshCoordinator(fetcher, time_provider=clock)
    account = make_account(enabled=False)

    assert coordinator.refresh_account(account) is None
    assert coordinator.refresh_account(account, force=True) is None

    assert fetcher.calls == []
    assert account.id not in coordinator.results


@pytest.mark.asyncio
async def test_fetcher_exception_becomes_unknown_error() -> None:
    clock = ManualClock()
    boom = RuntimeError("boom")

    async def failing_fetcher(account: Account, secret: object) -> Success:
        raise boom

    coordinator = RefreshCoordinator(failing_fetcher, time_provider=clock)
    account = make_account()

    result = await coordinator.refresh_account(account)

    assert isinstance(result, Failure)
    assert result.kind is ErrorKind.UNKNOWN_ERROR
    assert result.cause is boom
    assert coordinator.results.get(account.id) == result
    assert not coordinator.is_refreshing(account.id)


@pytest.mark.asyncio
async def test_failing_callback_still_records_result() -> None:
    clock = ManualClock()
    coordinator = RefreshCoordinator(
        GatedFetcher(clock, blocking=False), time_provider=clock
    )
    account = make_account()

    def broken_callback(result: object) -> None:
        raise ValueError("listener bug")

    await coordinator.refresh_account(account, on_result=broken_callback)

    assert isinstance(coordinator.results.get(account.id), Success)


@pytest.mark.asyncio
async def test_accounts_refresh_independently() -> None:
    clock = ManualClock()
    fetcher = GatedFetcher(clock)
    coordinator = RefreshCoordinator(fetcher, time_provider=clock)
    first = make_account(id="acct-1")
    second = make_account(id="acct-2")

    task_one = coordinator.refresh_account(first)
    task_two = coordinator.refresh_account(second)

    assert task_one is not None and task_two is not None
    assert sorted(coordinator.in_flight()) == ["acct-1", "acct-2"]
    await asyncio.sleep(0)
    for gate in fetcher.gates:
        gate.set()
    await asyncio.gather(task_one, task_two)
    assert len(coordinator.results) == 2


@pytest.mark.asyncio
async def test_publish_supersedes_running_fetch() -> None:
    clock = ManualClock()
    fetcher = GatedFetcher(clock)
    coordinator = RefreshCoordinator(fetcher, time_provider=clock)
    account = make_account()
    failure = Failure.auth_error("Missing API key", timestamp=clock())

    task = coordinator.refresh_account(account)
    await asyncio.sleep(0)
    coordinator.publish(account, failure)

    with pytest.raises(asyncio.CancelledError):
        await task
    assert coordinator.results.get(account.id) == failure


@pytest.mark.asyncio
async def test_forget_drops_results_and_cancels_fetch() -> None:
    clock = ManualClock()
    fetcher = GatedFetcher(clock)
    coordinator = RefreshCoordinator(fetcher, time_provider=clock)
    account = make_account()
    coordinator.publish(account, Failure.network_error("offline", timestamp=clock()))

    task = coordinator.refresh_account(account)
    await asyncio.sleep(0)
    coordinator.forget(account.id)

    with pytest.raises(asyncio.CancelledError):
        await task
    assert account.id not in coordinator.results


@pytest.mark.asyncio
async def test_aclose_cancels_outstanding_fetches() -> None:
    clock = ManualClock()
    fetcher = GatedFetcher(clock)
    coordinator = RefreshCoordinator(fetcher, time_provider=clock)

    task = coordinator.refresh_account(make_account())
    await asyncio.sleep(0)
    await coordinator.aclose()

    assert task.cancelled()
    assert fetcher.cancelled == 1
    assert coordinator.in_flight() == []


def test_negative_ttl_is_rejected() -> None:
    async def fetcher(account: Account, secret: object) -> Success:
        raise AssertionError("not called")

    with pytest.raises(ValueError):
        RefreshCoordinator(fetcher, cache_ttl=-1)


@pytest.mark.asyncio
async def test_literal_ttl_and_force_scenario() -> None:
    clock = ManualClock()
    calls = 0

    async def slow_fetcher(account: Account, secret: object) -> Success:
        nonlocal calls
        calls += 1
        await asyncio.sleep(1.0)
        return make_success(account, clock(), Decimal("5"))

    coordinator = RefreshCoordinator(slow_fetcher, cache_ttl=60, time_provider=clock)
    account = make_account()

    tasks = [coordinator.refresh_account(account) for _ in range(3)]
    await asyncio.gather(*(task for task in tasks if task is not None))
    assert calls == 1

    clock.advance(30)
    assert coordinator.refresh_account(account) is None
    assert calls == 1

    clock.advance(31)
    task = coordinator.refresh_account(account)
    assert task is not None
    await asyncio.sleep(0)
    assert calls == 2

    forced = coordinator.refresh_account(account, force=True)
    await asyncio.sleep(0)
    assert calls == 3
    await forced
