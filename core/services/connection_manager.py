"""
Connection lifecycle for the node session + VaultManager binding.

    disconnected -> connecting -> verifying -> ready -> reconnecting -> disconnected

Reconnects use a linear delay (attempt * base_delay) and stop after
`max_attempts` consecutive failures until `reinitialize()` is called.
Host resolution failures never trigger an automatic reconnect.
"""

from __future__ import annotations

import asyncio
import logging
import socket
from typing import Any, Awaitable, Callable, Optional

from core.domain.enums.sync_enums import ConnectionState
from core.domain.errors import (
    ConnectionNotReadyError,
    ContractAbsentError,
    NonTransientConnectionError,
    TransientProviderError,
    VaultSyncError,
)
from core.domain.gateways.vault_manager_gateway_interface import VaultManagerGatewayInterface
from core.services.request_executor import RPC_ENDPOINT, RequestExecutor

logger = logging.getLogger(__name__)

GatewayFactory = Callable[[], VaultManagerGatewayInterface]
OnReady = Callable[[VaultManagerGatewayInterface], Awaitable[None]]

_HOST_RESOLUTION_MARKERS = (
    "enotfound",
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo failed",
    "temporary failure in name resolution",
)


def is_non_transient(exc: BaseException) -> bool:
    """
    True for failures that retrying will not fix (unresolvable RPC host).
    """
    seen = set()
    cur: Optional[BaseException] = exc
    while cur is not None and id(cur) not in seen:
        seen.add(id(cur))
        if isinstance(cur, (NonTransientConnectionError, socket.gaierror)):
            return True
        message = str(cur).lower()
        if any(m in message for m in _HOST_RESOLUTION_MARKERS):
            return True
        cur = cur.__cause__ or cur.__context__
    return False


class ConnectionManager:
    def __init__(
        self,
        gateway_factory: GatewayFactory,
        executor: RequestExecutor,
        *,
        max_attempts: int = 5,
        base_delay_sec: float = 5.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._factory = gateway_factory
        self._executor = executor
        self.max_attempts = int(max_attempts)
        self.base_delay_sec = float(base_delay_sec)
        self._sleep = sleep

        self.state: ConnectionState = ConnectionState.DISCONNECTED
        self.reconnect_attempts = 0
        self.halted = False
        self.last_error: Optional[str] = None

        self._gateway: Optional[VaultManagerGatewayInterface] = None
        self._on_ready: Optional[OnReady] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._closed = False

    # ------------------------------------------------------------------ #
    # Gateway access
    # ------------------------------------------------------------------ #

    @property
    def gateway(self) -> VaultManagerGatewayInterface:
        if self._gateway is None or self.state != ConnectionState.READY:
            raise ConnectionNotReadyError(f"Node connection is {self.state}")
        return self._gateway

    @property
    def is_ready(self) -> bool:
        return self.state == ConnectionState.READY and self._gateway is not None

    # ------------------------------------------------------------------ #
    # Single attempt
    # ------------------------------------------------------------------ #

    async def connect(self) -> VaultManagerGatewayInterface:
        """
        One connect + verify attempt. Raises on failure; never schedules anything.
        """
        await self._release_gateway()

        self.state = ConnectionState.CONNECTING
        gateway = self._factory()
        try:
            chain_id = await self._executor.execute(RPC_ENDPOINT, gateway.get_chain_id)
            logger.info("Blockchain provider connected (chain id %s)", chain_id)

            self.state = ConnectionState.VERIFYING
            code = await self._executor.execute(RPC_ENDPOINT, gateway.get_code)
            if not code:
                raise ContractAbsentError(f"Contract not found at {gateway.address}")
        except VaultSyncError:
            await self._abandon(gateway)
            raise
        except Exception as exc:
            await self._abandon(gateway)
            if is_non_transient(exc):
                raise NonTransientConnectionError(f"RPC host unreachable: {exc}") from exc
            raise TransientProviderError(f"Node connection failed: {exc}") from exc
        except BaseException:
            await self._abandon(gateway)
            raise

        self._gateway = gateway
        self.state = ConnectionState.READY
        logger.info("VaultManager contract verified at %s", gateway.address)
        return gateway

    # ------------------------------------------------------------------ #
    # Managed lifecycle
    # ------------------------------------------------------------------ #

    async def start(self, on_ready: OnReady) -> bool:
        """
        Connect and run `on_ready(gateway)`; on failure apply the reconnect policy.

        Returns True when the bring-up completed.
        """
        self._on_ready = on_ready
        if self._closed:
            return False
        try:
            gateway = await self.connect()
            await on_ready(gateway)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Blockchain bring-up failed: %s. App will continue without blockchain", exc)
            self.handle_failure(exc)
            return False

        self.reconnect_attempts = 0
        self.last_error = None
        return True

    def handle_failure(self, exc: BaseException) -> bool:
        """
        Route a connection-level failure into the reconnect policy.

        Returns True when a reconnect was scheduled.
        """
        self.last_error = str(exc)
        if self._closed:
            return False
        if self.state == ConnectionState.READY:
            self.state = ConnectionState.DISCONNECTED
        if is_non_transient(exc):
            logger.error("Non-transient connection failure, automatic reconnect disabled: %s", exc)
            self.state = ConnectionState.DISCONNECTED
            return False
        return self.schedule_reconnect()

    def schedule_reconnect(self) -> bool:
        if self._closed or self._on_ready is None:
            return False
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return True

        if self.reconnect_attempts >= self.max_attempts:
            logger.error("Max reconnection attempts reached. Manual intervention required.")
            self.halted = True
            self.state = ConnectionState.DISCONNECTED
            return False

        self.reconnect_attempts += 1
        delay = self.base_delay_sec * self.reconnect_attempts
        self.state = ConnectionState.RECONNECTING
        logger.info(
            "Scheduling reconnection attempt %d/%d in %.1fs",
            self.reconnect_attempts,
            self.max_attempts,
            delay,
        )
        self._reconnect_task = asyncio.create_task(self._reconnect_after(delay, self._on_ready))
        return True

    async def _reconnect_after(self, delay: float, on_ready: OnReady) -> None:
        await self._sleep(delay)
        # Let start() schedule the next attempt from a fresh task.
        self._reconnect_task = None
        await self.start(on_ready)

    async def wait_reconnects(self) -> None:
        """
        Wait until no reconnect attempt is pending (used by tests and shutdown).
        """
        while self._reconnect_task is not None and not self._reconnect_task.done():
            await asyncio.shield(self._reconnect_task)

    async def reinitialize(self) -> bool:
        """
        Explicit reset: clear the attempt counter and bring the connection up again.
        """
        if self._on_ready is None:
            raise ConnectionNotReadyError("start() was never called")
        await self._cancel_reconnect()
        self.reconnect_attempts = 0
        self.halted = False
        self._closed = False
        return await self.start(self._on_ready)

    async def close(self) -> None:
        self._closed = True
        await self._cancel_reconnect()
        await self._release_gateway()
        self.state = ConnectionState.DISCONNECTED

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    async def _cancel_reconnect(self) -> None:
        task = self._reconnect_task
        self._reconnect_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _release_gateway(self) -> None:
        gateway = self._gateway
        self._gateway = None
        if gateway is not None:
            await self._close_quietly(gateway)

    async def _abandon(self, gateway: VaultManagerGatewayInterface) -> None:
        self.state = ConnectionState.DISCONNECTED
        await self._close_quietly(gateway)

    @staticmethod
    async def _close_quietly(gateway: VaultManagerGatewayInterface) -> None:
        try:
            await gateway.close()
        except Exception as exc:
            logger.debug("Gateway close failed: %s", exc)

    def status(self) -> dict:
        return {
            "state": str(self.state),
            "reconnect_attempts": self.reconnect_attempts,
            "max_attempts": self.max_attempts,
            "halted": self.halted,
            "last_error": self.last_error,
        }
