"""Tests for the observable result store and the balance event bus."""

from __future__ import annotations

import asyncio

import pytest

from engine.events import BalanceEventBus, ResultStore
from tokenpulse_client.models import Failure


def test_subscriber_receives_current_snapshot_immediately() -> None:
    store = ResultStore()
    failure = Failure.network_error("offline")
    store._set("a1", failure)
    seen = []

    store.subscribe(seen.append)

    assert len(seen) == 1
    assert dict(seen[0]) == {"a1": failure}


def test_writes_broadcast_until_unsubscribed() -> None:
    store = ResultStore()
    seen = []
    unsubscribe = store.subscribe(seen.append)

    store._set("a1", Failure.auth_error("Missing API key"))
    unsubscribe()
    store._set("a2", Failure.auth_error("Missing API key"))

    assert [sorted(snapshot) for snapshot in seen] == [[], ["a1"]]


def test_snapshot_is_read_only() -> None:
    store = ResultStore()
    store._set("a1", Failure.parse_error("bad"))

    snapshot = store.snapshot()

    with pytest.raises(TypeError):
        snapshot["a2"] = Failure.parse_error("bad")  # type: ignore[index]
    store._discard("a1")
    assert "a1" in snapshot
    assert "a1" not in store


def test_broken_listener_does_not_block_others() -> None:
    store = ResultStore()
    seen = []

    def broken(snapshot) -> None:
        raise RuntimeError("listener bug")

    store.subscribe(broken)
    store.subscribe(seen.append)
    store._set("a1", Failure.parse_error("bad"))

    assert len(seen) == 2


@pytest.mark.asyncio
async def test_event_bus_runs_sync_and_async_listeners() -> None:
    bus = BalanceEventBus()
    sync_seen = []
    async_seen = []

    async def async_listener(account_id, result) -> None:
        await asyncio.sleep(0)
        async_seen.append(account_id)

    bus.subscribe(lambda account_id, result: sync_seen.append(account_id))
    bus.subscribe(async_listener)

    bus.balance_updated("a1", Failure.rate_limited("slow down"))
    assert sync_seen == ["a1"]

    await asyncio.sleep(0.01)
    assert async_seen == ["a1"]
    await bus.aclose()


@pytest.mark.asyncio
async def test_event_bus_aclose_cancels_pending_listeners() -> None:
    bus = BalanceEventBus()
    started = asyncio.Event()

    async def slow_listener(account_id, result) -> None:
        started.set()
        await asyncio.Event().wait()

    bus.subscribe(slow_listener)
    bus.balance_updated("a1", Failure.rate_limited("slow down"))
    await started.wait()

    await bus.aclose()

    assert bus._pending == set()
