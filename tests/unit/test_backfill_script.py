from __future__ import annotations

from types import SimpleNamespace

import pytest

from core.domain.errors import ContractAbsentError
from fakes import (
    FakeGateway,
    InMemoryNotificationRepository,
    InMemoryUserRepository,
    InMemoryVaultRepository,
    deposited,
    fast_executor,
    vault_created,
)
from scripts import backfill_vault_events


@pytest.fixture
def chain() -> FakeGateway:
    return FakeGateway(head=100)


@pytest.fixture
def mongo_closed(monkeypatch) -> list:
    closed = []

    async def close_mongo_client():
        closed.append(True)

    monkeypatch.setattr(backfill_vault_events, "close_mongo_client", close_mongo_client)
    return closed


@pytest.fixture
def store(monkeypatch, chain, clock, mongo_closed) -> InMemoryVaultRepository:
    vaults = InMemoryVaultRepository()
    settings = SimpleNamespace(
        RPC_URL="http://node.test",
        CONTRACT_ADDRESS=chain.address,
        SYNC_BATCH_SIZE=50,
        SYNC_MAX_BLOCK_RANGE=100,
    )
    monkeypatch.setattr(backfill_vault_events, "get_settings", lambda: settings)
    monkeypatch.setattr(backfill_vault_events, "VaultManagerAdapter", SimpleNamespace(from_rpc=lambda url, address: chain))
    monkeypatch.setattr(backfill_vault_events, "RequestExecutor", SimpleNamespace(from_settings=lambda s: fast_executor(clock)))
    monkeypatch.setattr(backfill_vault_events, "VaultRepositoryMongoDB", lambda: vaults)
    monkeypatch.setattr(backfill_vault_events, "NotificationRepositoryMongoDB", InMemoryNotificationRepository)
    monkeypatch.setattr(backfill_vault_events, "UserRepositoryMongoDB", InMemoryUserRepository)
    return vaults


async def test_backfill_replays_the_requested_range(store, chain, mongo_closed):
    chain.add_log(vault_created(4, block=10, tx="0xc4"))
    chain.add_log(deposited(4, 10**18, block=20, tx="0xd4"))
    chain.add_log(deposited(4, 10**18, block=60, tx="0xlate"))

    failed = await backfill_vault_events.backfill(5, 40, notify=False)

    assert failed == 0
    assert [d.transaction_hash for d in store.vaults["4"].deposits] == ["0xd4"]
    assert chain.closed is True
    assert mongo_closed == [True]


async def test_backfill_releases_resources_when_connect_fails(store, chain, mongo_closed):
    chain.code = b""

    with pytest.raises(ContractAbsentError):
        await backfill_vault_events.backfill(5, 40, notify=False)

    assert mongo_closed == [True]
    assert store.vaults == {}
