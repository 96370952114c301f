"""
Wires connection, historical sync, live events and the periodic repair job
into one explicitly constructed service.

Bring-up (every successful (re)connect):
    cold start: floor -> live consumer -> sync_recent() task -> periodic repair
    reconnect:  live consumer -> repair_gaps() task from the checkpoint -> periodic repair

Catch-up runs as a task owned by the pipeline; bring-up never waits for it.

Shutdown:
    stop live events -> cancel catch-up -> drain applier -> stop timer -> release connection
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from config import get_settings
from core.domain.gateways.email_sender_interface import EmailSenderInterface
from core.domain.gateways.vault_manager_gateway_interface import VaultManagerGatewayInterface
from core.domain.repositories import (
    CheckpointRepositoryInterface,
    NotificationRepositoryInterface,
    UserRepositoryInterface,
    VaultRepositoryInterface,
)
from core.services.checkpoint_tracker import CheckpointTracker
from core.services.connection_manager import ConnectionManager, GatewayFactory
from core.services.event_applier import VaultEventApplier
from core.services.historical_sync import HistoricalSyncEngine
from core.services.live_subscriber import LiveSubscriber
from core.services.periodic_scheduler import PeriodicScheduler
from core.services.request_executor import RPC_ENDPOINT, RPC_LIMITS, RequestExecutor
from core.services.token_resolver import TokenResolver
from core.use_cases.vault_resync_usecase import VaultResyncUseCase

logger = logging.getLogger(__name__)

COLD_START_LOOKBACK_BLOCKS = 100


class VaultSyncPipeline:
    def __init__(
        self,
        *,
        connection: ConnectionManager,
        executor: RequestExecutor,
        tracker: CheckpointTracker,
        applier: VaultEventApplier,
        sync_engine: HistoricalSyncEngine,
        live: LiveSubscriber,
        resync: VaultResyncUseCase,
        sync_interval_sec: float = 600.0,
        deployment_block: int = 0,
        cold_start_lookback: int = COLD_START_LOOKBACK_BLOCKS,
        enabled: bool = True,
        live_stop_grace_sec: float = 5.0,
    ) -> None:
        self.connection = connection
        self.executor = executor
        self.tracker = tracker
        self.applier = applier
        self.sync_engine = sync_engine
        self.live = live
        self.resync = resync
        self.deployment_block = int(deployment_block or 0)
        self.cold_start_lookback = int(cold_start_lookback)
        self.enabled = bool(enabled)
        self.live_stop_grace_sec = float(live_stop_grace_sec)

        self.scheduler = PeriodicScheduler(sync_interval_sec, self._periodic_job)
        self._live_task: Optional[asyncio.Task] = None
        self._catch_up_task: Optional[asyncio.Task] = None
        self._start_task: Optional[asyncio.Task] = None
        self.started = False

    # ------------------------------------------------------------------ #
    # Construction
    # ------------------------------------------------------------------ #

    @classmethod
    def build(
        cls,
        *,
        gateway_factory: GatewayFactory,
        vaults: VaultRepositoryInterface,
        users: UserRepositoryInterface,
        notifications: NotificationRepositoryInterface,
        checkpoints: Optional[CheckpointRepositoryInterface] = None,
        email: Optional[EmailSenderInterface] = None,
        executor: Optional[RequestExecutor] = None,
        batch_size: int = 50,
        max_block_range: int = 100,
        sync_interval_sec: float = 600.0,
        poll_interval_sec: float = 4.0,
        reconnect_max_attempts: int = 5,
        reconnect_base_delay_sec: float = 5.0,
        deployment_block: int = 0,
        enabled: bool = True,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> "VaultSyncPipeline":
        executor = executor or RequestExecutor({RPC_ENDPOINT: RPC_LIMITS})
        connection = ConnectionManager(
            gateway_factory,
            executor,
            max_attempts=reconnect_max_attempts,
            base_delay_sec=reconnect_base_delay_sec,
            sleep=sleep,
        )
        tracker = CheckpointTracker(checkpoints)
        tokens = TokenResolver(connection, executor)
        applier = VaultEventApplier(vaults, users, notifications, tokens, email)
        sync_engine = HistoricalSyncEngine(
            connection,
            executor,
            applier,
            tracker,
            batch_size=batch_size,
            max_block_range=max_block_range,
            sleep=sleep,
        )
        live = LiveSubscriber(connection, executor, poll_interval_sec=poll_interval_sec)
        resync = VaultResyncUseCase(connection, executor, vaults, tokens)
        return cls(
            connection=connection,
            executor=executor,
            tracker=tracker,
            applier=applier,
            sync_engine=sync_engine,
            live=live,
            resync=resync,
            sync_interval_sec=sync_interval_sec,
            deployment_block=deployment_block,
            enabled=enabled,
        )

    @classmethod
    def from_settings(cls) -> "VaultSyncPipeline":
        from adapters.chain.vault_manager import VaultManagerAdapter
        from adapters.external.database.checkpoint_repository_mongodb import CheckpointRepositoryMongoDB
        from adapters.external.database.notification_repository_mongodb import NotificationRepositoryMongoDB
        from adapters.external.database.user_repository_mongodb import UserRepositoryMongoDB
        from adapters.external.database.vault_repository_mongodb import VaultRepositoryMongoDB
        from adapters.external.email.smtp_email_sender import SmtpEmailSender

        s = get_settings()
        enabled = bool(s.ENABLE_BLOCKCHAIN and s.RPC_URL and s.CONTRACT_ADDRESS)

        def gateway_factory() -> VaultManagerGatewayInterface:
            return VaultManagerAdapter.from_rpc(s.RPC_URL, s.CONTRACT_ADDRESS)

        return cls.build(
            gateway_factory=gateway_factory,
            vaults=VaultRepositoryMongoDB(),
            users=UserRepositoryMongoDB(),
            notifications=NotificationRepositoryMongoDB(),
            checkpoints=CheckpointRepositoryMongoDB(),
            email=SmtpEmailSender.from_settings(),
            executor=RequestExecutor.from_settings(s),
            batch_size=s.SYNC_BATCH_SIZE,
            max_block_range=s.SYNC_MAX_BLOCK_RANGE,
            sync_interval_sec=s.SYNC_INTERVAL_SEC,
            poll_interval_sec=s.LIVE_POLL_INTERVAL_SEC,
            reconnect_max_attempts=s.RECONNECT_MAX_ATTEMPTS,
            reconnect_base_delay_sec=s.RECONNECT_BASE_DELAY_SEC,
            deployment_block=s.CONTRACT_DEPLOYMENT_BLOCK,
            enabled=enabled,
        )

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def start(self) -> bool:
        if not self.enabled:
            logger.info("Blockchain service disabled (ENABLE_BLOCKCHAIN / RPC_URL / CONTRACT_ADDRESS)")
            return False
        self.started = True
        await self.tracker.load()
        return await self.connection.start(self._on_ready)

    def start_in_background(self) -> asyncio.Task:
        """
        Run `start()` as a task so callers (the HTTP app) are never held up by
        the node bring-up. `shutdown()` cancels it if still pending.
        """
        if self._start_task is None or self._start_task.done():
            self._start_task = asyncio.create_task(self._start_logged(), name="vault-sync-start")
        return self._start_task

    async def _start_logged(self) -> bool:
        try:
            return await self.start()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Sync pipeline failed to start")
            return False

    def cold_start_floor(self, head: int) -> int:
        """
        Lowest block a (re)start may resume from: the deployment block
        (or the head when unknown), never more than the lookback behind head.
        """
        deployment = self.deployment_block or head
        return max(deployment, head - self.cold_start_lookback)

    async def _on_ready(self, gateway: VaultManagerGatewayInterface) -> None:
        await self._stop_live()
        await self._cancel_catch_up()
        await self.scheduler.stop()

        head = int(await self.executor.execute(RPC_ENDPOINT, gateway.get_block_number))
        checkpoint = self.tracker.last_processed_block
        if checkpoint <= 0:
            floor = self.cold_start_floor(head)
            self.tracker.reset_floor(floor)
            logger.info("Cold start from block %d (head %d)", floor, head)
            catch_up = self.sync_engine.sync_recent
        else:
            # gaps wider than the range ceiling are recorded by the sync engine
            logger.info("Resuming after block %d (head %d)", checkpoint, head)
            catch_up = self.sync_engine.repair_gaps

        self.live.reset()
        self._live_task = asyncio.create_task(self._consume_live(), name="vault-live-events")
        self._catch_up_task = asyncio.create_task(self._catch_up(catch_up), name="vault-catch-up")

    async def _catch_up(self, sync: Callable[[], Awaitable[Any]]) -> None:
        try:
            await sync()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("Historical catch-up failed: %s", exc)
            self.connection.handle_failure(exc)
            return
        self.scheduler.start()
        logger.info("Blockchain service initialized")

    async def wait_caught_up(self) -> None:
        """
        Wait for the catch-up started by the latest bring-up (if any) to finish.
        """
        for task in (self._start_task, self._catch_up_task):
            if task is not None:
                await asyncio.wait({task})

    async def _consume_live(self) -> None:
        try:
            async for event in self.live.events():
                await self.applier.apply(event)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("Live event stream failed: %s", exc)
            self.connection.handle_failure(exc)

    async def _periodic_job(self) -> None:
        if not self.connection.is_ready:
            logger.info("Periodic sync skipped: connection is %s", self.connection.state)
            return
        await self.sync_engine.repair_gaps()

    async def _stop_live(self) -> None:
        self.live.stop()
        task = self._live_task
        self._live_task = None
        if task is None or task.done() or task is asyncio.current_task():
            return
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=self.live_stop_grace_sec)
        except asyncio.TimeoutError:
            await self._cancel(task)

    async def _cancel_catch_up(self) -> None:
        task = self._catch_up_task
        self._catch_up_task = None
        await self._cancel(task)

    @staticmethod
    async def _cancel(task: Optional[asyncio.Task]) -> None:
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def shutdown(self) -> None:
        logger.info("Shutting down blockchain service...")
        await self._cancel(self._start_task)
        self._start_task = None
        await self._stop_live()
        await self._cancel_catch_up()
        await self.applier.drain()
        await self.scheduler.stop()
        await self.connection.close()
        self.started = False
        logger.info("Blockchain service shutdown complete")

    async def reinitialize(self) -> bool:
        logger.info("Manual reinitialization requested")
        self.started = True
        return await self.connection.reinitialize()

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #

    def status(self) -> Dict[str, Any]:
        report = self.sync_engine.last_report
        return {
            "enabled": self.enabled,
            "connection": self.connection.status(),
            "last_processed_block": self.tracker.last_processed_block,
            "sync_running": self.sync_engine.running,
            "catch_up_running": self._catch_up_task is not None and not self._catch_up_task.done(),
            "last_sync": None
            if report is None
            else {
                "from_block": report.from_block,
                "to_block": report.to_block,
                "windows": report.windows,
                "events_applied": report.events_applied,
                "events_failed": report.events_failed,
                "skipped_oversized": report.skipped_oversized,
                "completed": report.completed,
            },
            "gaps": [
                {"from_block": g.from_block, "to_block": g.to_block, "recorded_at_ms": g.recorded_at_ms}
                for g in self.sync_engine.gaps
            ],
            "events": {
                "applied": self.applier.applied,
                "failed": self.applier.failed,
                "live_received": self.live.received,
            },
            "periodic": {
                "running": self.scheduler.running,
                "interval_sec": self.scheduler.interval_sec,
                "runs": self.scheduler.runs,
                "failures": self.scheduler.failures,
            },
            "executor": self.executor.status(),
        }
