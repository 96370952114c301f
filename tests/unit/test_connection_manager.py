from __future__ import annotations

import socket

import pytest

from core.domain.enums.sync_enums import ConnectionState
from core.domain.errors import (
    ConnectionNotReadyError,
    ContractAbsentError,
    NonTransientConnectionError,
    TransientProviderError,
)
from core.services.connection_manager import ConnectionManager, is_non_transient
from fakes import FakeGateway


class Factory:
    def __init__(self, *gateways: FakeGateway) -> None:
        self.gateways = list(gateways)
        self.calls = 0

    def __call__(self) -> FakeGateway:
        self.calls += 1
        if len(self.gateways) > 1:
            return self.gateways.pop(0)
        return self.gateways[0]


class Bringups:
    def __init__(self) -> None:
        self.gateways = []

    async def __call__(self, gateway) -> None:
        self.gateways.append(gateway)


async def test_connect_verifies_contract_code(executor, clock):
    gateway = FakeGateway()
    conn = ConnectionManager(Factory(gateway), executor, sleep=clock.sleep)

    with pytest.raises(ConnectionNotReadyError):
        _ = conn.gateway

    assert await conn.connect() is gateway
    assert conn.state == ConnectionState.READY
    assert conn.gateway is gateway
    assert gateway.count("get_chain_id") == 1
    assert gateway.count("get_code") == 1


async def test_empty_code_is_contract_absent(executor, clock):
    gateway = FakeGateway(code=b"")
    conn = ConnectionManager(Factory(gateway), executor, sleep=clock.sleep)

    with pytest.raises(ContractAbsentError):
        await conn.connect()

    assert conn.state == ConnectionState.DISCONNECTED
    assert gateway.closed is True


async def test_reconnect_stops_after_max_attempts(executor, clock):
    factory = Factory(FakeGateway(code=b""))
    conn = ConnectionManager(factory, executor, max_attempts=5, base_delay_sec=5, sleep=clock.sleep)
    on_ready = Bringups()

    assert await conn.start(on_ready) is False
    await conn.wait_reconnects()

    # initial attempt + 5 reconnects
    assert factory.calls == 6
    assert conn.halted is True
    assert conn.state == ConnectionState.DISCONNECTED
    assert clock.sleeps == [5, 10, 15, 20, 25]
    assert on_ready.gateways == []


async def test_reinitialize_resets_the_counter(executor, clock):
    gateway = FakeGateway(code=b"")
    conn = ConnectionManager(Factory(gateway), executor, max_attempts=2, base_delay_sec=1, sleep=clock.sleep)
    on_ready = Bringups()

    await conn.start(on_ready)
    await conn.wait_reconnects()
    assert conn.halted is True

    gateway.code = b"\x60\x80"
    assert await conn.reinitialize() is True
    assert conn.halted is False
    assert conn.reconnect_attempts == 0
    assert conn.state == ConnectionState.READY
    assert on_ready.gateways == [gateway]


async def test_transient_failure_recovers_on_reconnect(executor, clock):
    broken = FakeGateway()
    broken.errors["get_chain_id"] = [ConnectionResetError("connection reset by peer")]
    healthy = FakeGateway()
    conn = ConnectionManager(Factory(broken, healthy), executor, sleep=clock.sleep)
    on_ready = Bringups()

    assert await conn.start(on_ready) is False
    assert conn.state == ConnectionState.RECONNECTING
    await conn.wait_reconnects()

    assert conn.state == ConnectionState.READY
    assert conn.reconnect_attempts == 0
    assert on_ready.gateways == [healthy]


async def test_connect_classifies_provider_failures(executor, clock):
    gateway = FakeGateway()
    reset = ConnectionResetError("connection reset by peer")
    gateway.errors["get_chain_id"] = [reset, socket.gaierror(-2, "Name or service not known")]
    conn = ConnectionManager(Factory(gateway), executor, sleep=clock.sleep)

    with pytest.raises(TransientProviderError) as transient:
        await conn.connect()
    assert transient.value.__cause__ is reset
    assert conn.state == ConnectionState.DISCONNECTED

    with pytest.raises(NonTransientConnectionError):
        await conn.connect()


async def test_bring_up_failure_in_on_ready_is_retried(executor, clock):
    gateway = FakeGateway()
    conn = ConnectionManager(Factory(gateway), executor, sleep=clock.sleep)
    attempts = []

    async def on_ready(gw):
        attempts.append(gw)
        if len(attempts) == 1:
            raise RuntimeError("head lookup failed")

    await conn.start(on_ready)
    await conn.wait_reconnects()

    assert len(attempts) == 2
    assert conn.is_ready


async def test_host_resolution_failure_never_reconnects(executor, clock):
    gateway = FakeGateway()
    gateway.errors["get_chain_id"] = [socket.gaierror(-2, "Name or service not known")]
    factory = Factory(gateway)
    conn = ConnectionManager(factory, executor, sleep=clock.sleep)

    assert await conn.start(Bringups()) is False
    await conn.wait_reconnects()

    assert factory.calls == 1
    assert conn.reconnect_attempts == 0
    assert conn.state == ConnectionState.DISCONNECTED
    assert clock.sleeps == []


def test_non_transient_classification():
    assert is_non_transient(NonTransientConnectionError("dns"))
    assert is_non_transient(OSError("getaddrinfo ENOTFOUND rpc.example.invalid"))

    wrapped = RuntimeError("provider failed")
    wrapped.__cause__ = socket.gaierror(-2, "Name or service not known")
    assert is_non_transient(wrapped)

    assert not is_non_transient(ConnectionResetError("connection reset by peer"))
    assert not is_non_transient(ContractAbsentError("no code"))


async def test_close_cancels_pending_reconnect(executor):
    gateway = FakeGateway(code=b"")
    conn = ConnectionManager(Factory(gateway), executor, base_delay_sec=3600)

    await conn.start(Bringups())
    assert conn.state == ConnectionState.RECONNECTING

    await conn.close()
    assert conn.state == ConnectionState.DISCONNECTED
    assert conn.handle_failure(RuntimeError("late")) is False
