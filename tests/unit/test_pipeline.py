from __future__ import annotations

import asyncio

import pytest

import main
from core.domain.enums.sync_enums import ConnectionState
from core.use_cases.vault_sync_pipeline_usecase import VaultSyncPipeline
from fakes import (
    FakeGateway,
    InMemoryCheckpointRepository,
    deposited,
    fast_executor,
    vault_created,
    wait_until,
)


class GatedGateway(FakeGateway):
    """Historical log reads block until `gate` is set."""

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.gate = asyncio.Event()

    async def get_logs(self, event_name, from_block, to_block):
        await self.gate.wait()
        return await super().get_logs(event_name, from_block, to_block)


@pytest.fixture
def chain() -> FakeGateway:
    gateway = FakeGateway(head=1000)
    gateway.add_log(vault_created(1, block=800, tx="0xold"))
    gateway.add_log(vault_created(2, block=950, tx="0xc2"))
    gateway.add_log(deposited(2, 10**18, block=960, tx="0xd2"))
    return gateway


def _pipeline(chain, vaults, users, notifications, email, clock, **kwargs) -> VaultSyncPipeline:
    kwargs.setdefault("deployment_block", 1)
    return VaultSyncPipeline.build(
        gateway_factory=lambda: chain,
        vaults=vaults,
        users=users,
        notifications=notifications,
        email=email,
        executor=fast_executor(clock),
        poll_interval_sec=0.01,
        sleep=clock.sleep,
        **kwargs,
    )


async def _start(pipeline: VaultSyncPipeline) -> bool:
    ok = await pipeline.start()
    await pipeline.wait_caught_up()
    return ok


async def test_start_catches_up_recent_blocks_then_follows_live(chain, vaults, users, notifications, email, clock):
    checkpoints = InMemoryCheckpointRepository()
    pipeline = _pipeline(chain, vaults, users, notifications, email, clock, checkpoints=checkpoints)

    assert await _start(pipeline) is True

    # cold start floor is head - 100, so block 800 is never replayed
    assert "1" not in vaults.vaults
    assert len(vaults.vaults["2"].deposits) == 1
    assert pipeline.tracker.last_processed_block == 1000
    assert checkpoints.value == 1000
    assert pipeline.scheduler.running

    chain.push_live(deposited(2, 5 * 10**17, block=1001, tx="0xlive"))
    await wait_until(lambda: len(vaults.vaults["2"].deposits) == 2)

    # live events never move the checkpoint
    assert pipeline.tracker.last_processed_block == 1000

    await pipeline.shutdown()
    assert pipeline.scheduler.running is False
    assert pipeline.connection.state == ConnectionState.DISCONNECTED
    assert chain.closed is True


async def test_persisted_checkpoint_ahead_of_floor_is_kept(chain, vaults, users, notifications, email, clock):
    pipeline = _pipeline(
        chain, vaults, users, notifications, email, clock, checkpoints=InMemoryCheckpointRepository(value=970)
    )

    await _start(pipeline)

    assert vaults.vaults == {}
    assert pipeline.tracker.last_processed_block == 1000
    await pipeline.shutdown()


async def test_persisted_checkpoint_behind_floor_resumes_from_it(chain, vaults, users, notifications, email, clock):
    pipeline = _pipeline(
        chain, vaults, users, notifications, email, clock, checkpoints=InMemoryCheckpointRepository(value=790)
    )

    await _start(pipeline)

    assert set(vaults.vaults) == {"1", "2"}
    assert pipeline.sync_engine.gaps == []
    await pipeline.shutdown()


async def test_unknown_deployment_block_starts_at_head(chain, vaults, users, notifications, email, clock):
    pipeline = _pipeline(chain, vaults, users, notifications, email, clock, deployment_block=0)

    await _start(pipeline)

    assert vaults.vaults == {}
    assert pipeline.tracker.last_processed_block == 1000
    await pipeline.shutdown()


async def test_disabled_pipeline_never_connects(vaults, users, notifications, email, clock):
    calls = []

    def factory():
        calls.append(1)
        return FakeGateway()

    pipeline = VaultSyncPipeline.build(
        gateway_factory=factory,
        vaults=vaults,
        users=users,
        notifications=notifications,
        enabled=False,
    )

    assert await pipeline.start() is False
    assert calls == []
    await pipeline.shutdown()


async def test_failed_bring_up_halts_then_reinitializes(chain, vaults, users, notifications, email, clock):
    chain.code = b""
    pipeline = _pipeline(chain, vaults, users, notifications, email, clock, reconnect_max_attempts=2)

    assert await pipeline.start() is False
    await pipeline.connection.wait_reconnects()
    assert pipeline.status()["connection"]["halted"] is True

    chain.code = b"\x60\x80"
    assert await pipeline.reinitialize() is True
    await pipeline.wait_caught_up()
    assert pipeline.connection.is_ready
    assert "2" in vaults.vaults
    await pipeline.shutdown()


async def test_reinitialize_replays_blocks_missed_while_down(chain, vaults, users, notifications, email, clock):
    pipeline = _pipeline(chain, vaults, users, notifications, email, clock)
    await _start(pipeline)
    assert pipeline.tracker.last_processed_block == 1000

    chain.add_log(deposited(2, 10**18, block=1050, tx="0xwhiledown"))
    chain.head = 1250

    assert await pipeline.reinitialize() is True
    await pipeline.wait_caught_up()

    assert [d.transaction_hash for d in vaults.vaults["2"].deposits] == ["0xd2", "0xwhiledown"]
    assert pipeline.tracker.last_processed_block == 1250
    assert pipeline.sync_engine.gaps == []
    await pipeline.shutdown()


async def test_long_outage_is_recorded_as_a_gap(chain, vaults, users, notifications, email, clock):
    pipeline = _pipeline(chain, vaults, users, notifications, email, clock)
    await _start(pipeline)

    chain.head = 5000
    await pipeline.reinitialize()
    await pipeline.wait_caught_up()

    assert [(g.from_block, g.to_block) for g in pipeline.sync_engine.gaps] == [(1001, 5000)]
    assert pipeline.status()["gaps"][0]["from_block"] == 1001
    await pipeline.shutdown()


async def test_live_stream_failure_triggers_reconnect(chain, vaults, users, notifications, email, clock):
    pipeline = _pipeline(chain, vaults, users, notifications, email, clock)
    chain.errors["get_filter_changes"] = [ConnectionResetError("socket hang up")]

    await pipeline.start()
    # a second bring-up installs a fresh set of filters and resets the attempt counter on success
    await wait_until(
        lambda: chain.count("create_filter") >= 10 and pipeline.connection.reconnect_attempts == 0
    )

    assert pipeline.connection.is_ready
    await pipeline.shutdown()


async def test_start_returns_before_catch_up_finishes(vaults, users, notifications, email, clock):
    chain = GatedGateway(head=1000)
    chain.add_log(vault_created(2, block=950, tx="0xc2"))
    pipeline = _pipeline(chain, vaults, users, notifications, email, clock)

    assert await pipeline.start() is True
    assert pipeline.status()["catch_up_running"] is True
    assert vaults.vaults == {}

    chain.gate.set()
    await pipeline.wait_caught_up()
    assert "2" in vaults.vaults
    assert pipeline.status()["catch_up_running"] is False
    await pipeline.shutdown()


async def test_shutdown_cancels_a_pending_catch_up(vaults, users, notifications, email, clock):
    chain = GatedGateway(head=1000)
    pipeline = _pipeline(chain, vaults, users, notifications, email, clock)
    await pipeline.start()

    await pipeline.shutdown()

    assert pipeline.status()["catch_up_running"] is False
    assert pipeline.sync_engine.running is False
    assert pipeline.connection.state == ConnectionState.DISCONNECTED


async def test_app_lifespan_serves_while_catching_up(monkeypatch, vaults, users, notifications, email, clock):
    chain = GatedGateway(head=1000)
    chain.add_log(vault_created(2, block=950, tx="0xc2"))
    pipeline = _pipeline(chain, vaults, users, notifications, email, clock)

    async def noop() -> None:
        return None

    monkeypatch.setattr(main, "init_mongo_indexes", noop)
    monkeypatch.setattr(main, "close_mongo_client", noop)
    monkeypatch.setattr(main.VaultSyncPipeline, "from_settings", classmethod(lambda cls: pipeline))

    async with main.lifespan(main.app):
        assert main.app.state.pipeline is pipeline
        await wait_until(lambda: pipeline.connection.is_ready)
        assert pipeline.status()["catch_up_running"] is True

        chain.gate.set()
        await pipeline.wait_caught_up()
        assert "2" in vaults.vaults

    assert pipeline.connection.state == ConnectionState.DISCONNECTED


async def test_status_reports_sync_state(chain, vaults, users, notifications, email, clock):
    pipeline = _pipeline(chain, vaults, users, notifications, email, clock)
    await _start(pipeline)

    status = pipeline.status()

    assert status["enabled"] is True
    assert status["connection"]["state"] == "ready"
    assert status["last_processed_block"] == 1000
    assert status["last_sync"]["completed"] is True
    assert status["events"]["applied"] == 2
    assert "rpc" in status["executor"]
    await pipeline.shutdown()
