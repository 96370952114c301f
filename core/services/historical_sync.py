"""
Checkpointed historical backfill of VaultManager events.

A range is replayed in fixed block windows. Inside a window, logs of every
vault topic are fetched first, then applied strictly in chain order
(block, tx index, log index). The checkpoint moves to the end of the range
only once every window has been consumed.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Tuple

from core.domain.entities.base_entity import MongoEntity
from core.domain.enums.vault_enums import VAULT_EVENTS
from core.domain.errors import DecodingError
from core.domain.schemas.onchain_types import ChainEvent, SyncGap, SyncReport
from core.services.checkpoint_tracker import CheckpointTracker
from core.services.connection_manager import ConnectionManager
from core.services.event_applier import VaultEventApplier
from core.services.request_executor import RPC_ENDPOINT, RequestExecutor, is_rate_limit_error

logger = logging.getLogger(__name__)


class HistoricalSyncEngine:
    def __init__(
        self,
        connection: ConnectionManager,
        executor: RequestExecutor,
        applier: VaultEventApplier,
        tracker: CheckpointTracker,
        *,
        batch_size: int = 50,
        max_block_range: int = 100,
        range_ceiling_multiplier: int = 3,
        settle_delay_sec: float = 0.5,
        rate_limit_pause_sec: float = 5.0,
        window_retries: int = 2,
        topics: Sequence[str] = VAULT_EVENTS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        now_ms: Callable[[], int] = MongoEntity.now_ms,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._connection = connection
        self._executor = executor
        self._applier = applier
        self._tracker = tracker
        self.batch_size = int(batch_size)
        self.max_block_range = int(max_block_range)
        self.range_ceiling_multiplier = int(range_ceiling_multiplier)
        self.settle_delay_sec = float(settle_delay_sec)
        self.rate_limit_pause_sec = float(rate_limit_pause_sec)
        self.window_retries = int(window_retries)
        self.topics = tuple(topics)
        self._sleep = sleep
        self._now_ms = now_ms

        self.gaps: List[SyncGap] = []
        self.last_report: Optional[SyncReport] = None
        self._lock = asyncio.Lock()

    @property
    def range_ceiling(self) -> int:
        return self.max_block_range * self.range_ceiling_multiplier

    @property
    def running(self) -> bool:
        return self._lock.locked()

    async def _head(self) -> int:
        gateway = self._connection.gateway
        return int(await self._executor.execute(RPC_ENDPOINT, gateway.get_block_number))

    # ------------------------------------------------------------------ #
    # Entry points
    # ------------------------------------------------------------------ #

    async def sync_recent(self) -> SyncReport:
        """
        Startup catch-up: at most `max_block_range` blocks behind the head.
        """
        head = await self._head()
        from_block = max(self._tracker.last_processed_block, head - self.max_block_range)
        return await self.sync_range(from_block, head)

    async def repair_gaps(self) -> Optional[SyncReport]:
        """
        Periodic catch-up from the checkpoint to the head. Skipped while another sync runs.
        """
        if self.running:
            logger.info("Historical sync already running, skipping gap repair")
            return None
        head = await self._head()
        last = self._tracker.last_processed_block
        if head <= last:
            return None
        return await self.sync_range(last + 1, head)

    async def sync_range(self, from_block: int, to_block: Optional[int] = None) -> SyncReport:
        async with self._lock:
            if to_block is None:
                to_block = await self._head()
            report = await self._sync_range(int(from_block), int(to_block))
            self.last_report = report
            return report

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    async def _sync_range(self, from_block: int, to_block: int) -> SyncReport:
        report = SyncReport(from_block=from_block, to_block=to_block)
        if to_block < from_block:
            report.checkpoint = self._tracker.last_processed_block
            return report

        total = to_block - from_block
        if total > self.range_ceiling:
            # Lossy on purpose: the events of this range are not replayed.
            logger.warning("Block range too large (%d blocks). Skipping historical sync.", total)
            logger.info("Consider setting CONTRACT_DEPLOYMENT_BLOCK to avoid large syncs")
            self.gaps.append(SyncGap(from_block=from_block, to_block=to_block, recorded_at_ms=self._now_ms()))
            await self._tracker.advance_to(to_block)
            report.skipped_oversized = True
            report.checkpoint = self._tracker.last_processed_block
            return report

        logger.info("Syncing events from block %d to %d (%d blocks)", from_block, to_block, total)

        start = from_block
        while start <= to_block:
            end = min(start + self.batch_size - 1, to_block)
            logger.debug("Processing blocks %d to %d", start, end)

            if not await self._sync_window(start, end, report):
                report.completed = False
                await self._tracker.advance_to(start - 1)
                report.checkpoint = self._tracker.last_processed_block
                logger.error(
                    "Historical sync stopped at blocks %d-%d, checkpoint held at %d",
                    start,
                    end,
                    report.checkpoint,
                )
                return report

            report.windows += 1
            start = end + 1
            if start <= to_block:
                await self._sleep(self.settle_delay_sec)

        await self._tracker.advance_to(to_block)
        report.checkpoint = self._tracker.last_processed_block
        logger.info(
            "Historical sync completed. Processed up to block %d (%d applied, %d failed)",
            to_block,
            report.events_applied,
            report.events_failed,
        )
        return report

    async def _sync_window(self, start: int, end: int, report: SyncReport) -> bool:
        for attempt in range(self.window_retries + 1):
            try:
                events, undecodable = await self._fetch_window(start, end)
            except Exception as exc:
                report.errors.append(f"{start}-{end}: {exc}")
                if is_rate_limit_error(exc) and attempt < self.window_retries:
                    logger.warning(
                        "Rate limited on blocks %d-%d, waiting %.1fs before retrying",
                        start,
                        end,
                        self.rate_limit_pause_sec,
                    )
                    await self._sleep(self.rate_limit_pause_sec)
                    continue
                logger.error("Error processing batch %d-%d: %s", start, end, exc)
                return False

            report.events_failed += undecodable
            for event in events:
                if await self._applier.apply(event):
                    report.events_applied += 1
                else:
                    report.events_failed += 1
            return True
        return False

    async def _fetch_window(self, start: int, end: int) -> Tuple[List[ChainEvent], int]:
        gateway = self._connection.gateway
        events: List[ChainEvent] = []
        undecodable = 0
        for topic in self.topics:
            raw_logs = await self._executor.execute(
                RPC_ENDPOINT,
                lambda t=topic: gateway.get_logs(t, start, end),
            )
            for raw in raw_logs:
                try:
                    events.append(gateway.decode(topic, raw))
                except DecodingError as exc:
                    undecodable += 1
                    logger.warning("Skipping undecodable %s log in blocks %d-%d: %s", topic, start, end, exc)
        events.sort(key=lambda e: e.chain_position)
        return events, undecodable
