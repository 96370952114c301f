from __future__ import annotations

import asyncio

import pytest

from core.domain.enums.vault_enums import ALL_EVENTS, VaultManagerEvent
from core.services.live_subscriber import LiveSubscriber
from fakes import BAD_LOG, deposited, fee_updated, vault_created


async def _collect(subscriber: LiveSubscriber, n: int):
    out = []
    async for event in subscriber.events():
        out.append(event)
        if len(out) >= n:
            subscriber.stop()
    return out


@pytest.fixture
def subscriber(connection, executor) -> LiveSubscriber:
    return LiveSubscriber(connection, executor, poll_interval_sec=0.01)


async def test_installs_one_filter_per_topic_and_yields_events(subscriber, gateway):
    gateway.push_live(vault_created(1, block=10, tx="0xc1"))
    gateway.push_live(fee_updated(1, 2, block=10, tx="0xf1"))

    events = await asyncio.wait_for(_collect(subscriber, 2), timeout=2)

    assert sorted(gateway.filters.values()) == sorted(str(t) for t in ALL_EVENTS)
    assert {e.name for e in events} == {VaultManagerEvent.VAULT_CREATED, VaultManagerEvent.PLATFORM_FEE_UPDATED}
    assert subscriber.received == 2


async def test_events_in_one_poll_are_chain_ordered(subscriber, gateway):
    gateway.push_live(deposited(1, 5, block=12, tx="0xd2"))
    gateway.push_live(deposited(1, 5, block=11, tx="0xd1", log_index=3))

    events = await asyncio.wait_for(_collect(subscriber, 2), timeout=2)

    assert [e.transaction_hash for e in events] == ["0xd1", "0xd2"]


async def test_undecodable_live_logs_are_skipped(subscriber, gateway):
    gateway.push_live(BAD_LOG, name=VaultManagerEvent.DEPOSITED)
    gateway.push_live(deposited(1, 5, block=11, tx="0xd1"))

    events = await asyncio.wait_for(_collect(subscriber, 1), timeout=2)

    assert [e.transaction_hash for e in events] == ["0xd1"]


async def test_events_arriving_later_are_picked_up(subscriber, gateway):
    async def publish_later():
        await asyncio.sleep(0.05)
        gateway.push_live(deposited(1, 5, block=20, tx="0xlate"))

    publisher = asyncio.create_task(publish_later())
    events = await asyncio.wait_for(_collect(subscriber, 1), timeout=2)
    await publisher

    assert events[0].transaction_hash == "0xlate"
    assert gateway.count("get_filter_changes") > len(ALL_EVENTS)


async def test_expired_filter_is_reinstalled(subscriber, gateway):
    gateway.errors["get_filter_changes"] = [ValueError("filter not found")]
    gateway.push_live(deposited(1, 5, block=11, tx="0xd1"))

    events = await asyncio.wait_for(_collect(subscriber, 1), timeout=2)

    assert len(events) == 1
    assert gateway.count("create_filter") == len(ALL_EVENTS) + 1


async def test_transport_errors_end_the_stream(subscriber, gateway):
    gateway.errors["get_filter_changes"] = [ConnectionResetError("socket hang up")]

    with pytest.raises(ConnectionResetError):
        await asyncio.wait_for(_collect(subscriber, 1), timeout=2)


async def test_stop_ends_an_idle_stream(subscriber):
    task = asyncio.create_task(_collect(subscriber, 1))
    await asyncio.sleep(0.03)

    subscriber.stop()

    assert await asyncio.wait_for(task, timeout=1) == []
    assert subscriber.stopped


async def test_stop_before_iteration_is_honored_until_reset(subscriber, gateway):
    gateway.push_live(vault_created(1, block=10, tx="0xc1"))
    subscriber.stop()

    assert await asyncio.wait_for(_collect(subscriber, 1), timeout=1) == []

    subscriber.reset()
    events = await asyncio.wait_for(_collect(subscriber, 1), timeout=2)
    assert [e.transaction_hash for e in events] == ["0xc1"]
