from __future__ import annotations

import pytest

from core.services.connection_manager import ConnectionManager
from core.services.event_applier import VaultEventApplier
from core.services.token_resolver import TokenResolver
from fakes import (
    ADMIN,
    FakeClock,
    FakeGateway,
    InMemoryNotificationRepository,
    InMemoryUserRepository,
    InMemoryVaultRepository,
    RecordingEmailSender,
    fast_executor,
    make_user,
)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def executor(clock):
    return fast_executor(clock)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def vaults() -> InMemoryVaultRepository:
    return InMemoryVaultRepository()


@pytest.fixture
def users() -> InMemoryUserRepository:
    return InMemoryUserRepository([make_user(), make_user(ADMIN, role="admin", user_id="a1", email=None)])


@pytest.fixture
def notifications() -> InMemoryNotificationRepository:
    return InMemoryNotificationRepository()


@pytest.fixture
def email() -> RecordingEmailSender:
    return RecordingEmailSender()


@pytest.fixture
async def connection(gateway, executor, clock) -> ConnectionManager:
    conn = ConnectionManager(lambda: gateway, executor, sleep=clock.sleep)
    await conn.connect()
    return conn


@pytest.fixture
def tokens(connection, executor) -> TokenResolver:
    return TokenResolver(connection, executor)


@pytest.fixture
def applier(vaults, users, notifications, tokens, email) -> VaultEventApplier:
    return VaultEventApplier(vaults, users, notifications, tokens, email, now_ms=lambda: 1_700_000_000_000)
