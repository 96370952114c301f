"""
Live VaultManager event stream.

One log filter is installed per topic and polled on a fixed interval. Events
from a poll are yielded in chain order. Errors other than decoding failures
end the stream so the caller can route them to the connection manager.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Dict, List, Sequence

from core.domain.enums.vault_enums import ALL_EVENTS
from core.domain.errors import DecodingError
from core.domain.schemas.onchain_types import ChainEvent
from core.services.connection_manager import ConnectionManager
from core.services.request_executor import RPC_ENDPOINT, RequestExecutor

logger = logging.getLogger(__name__)

_FILTER_EXPIRED_MARKERS = ("filter not found", "filter does not exist", "unknown filter")


class LiveSubscriber:
    def __init__(
        self,
        connection: ConnectionManager,
        executor: RequestExecutor,
        *,
        topics: Sequence[str] = ALL_EVENTS,
        poll_interval_sec: float = 4.0,
    ) -> None:
        self._connection = connection
        self._executor = executor
        self.topics = tuple(topics)
        self.poll_interval_sec = float(poll_interval_sec)
        self.received = 0
        self._stop = asyncio.Event()

    def stop(self) -> None:
        self._stop.set()

    def reset(self) -> None:
        """Re-arm after `stop()`; a stop issued before iteration begins is honored."""
        self._stop.clear()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    async def _install(self, gateway, topic: str) -> str:
        return await self._executor.execute(RPC_ENDPOINT, lambda: gateway.create_filter(topic))

    async def events(self) -> AsyncIterator[ChainEvent]:
        gateway = self._connection.gateway

        filters: Dict[str, str] = {}
        for topic in self.topics:
            filters[topic] = await self._install(gateway, topic)
        logger.info("Event listeners started for %d topics", len(filters))

        while not self._stop.is_set():
            for topic in self.topics:
                try:
                    raw_logs = await self._executor.execute(
                        RPC_ENDPOINT,
                        lambda f=filters[topic]: gateway.get_filter_changes(f),
                    )
                except Exception as exc:
                    if not any(m in str(exc).lower() for m in _FILTER_EXPIRED_MARKERS):
                        raise
                    logger.info("Log filter for %s expired, reinstalling", topic)
                    filters[topic] = await self._install(gateway, topic)
                    continue

                batch: List[ChainEvent] = []
                for raw in raw_logs:
                    try:
                        batch.append(gateway.decode(topic, raw))
                    except DecodingError as exc:
                        logger.warning("Skipping undecodable live %s log: %s", topic, exc)
                batch.sort(key=lambda e: e.chain_position)

                for event in batch:
                    if self._stop.is_set():
                        break
                    self.received += 1
                    yield event

            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.poll_interval_sec)
            except asyncio.TimeoutError:
                pass

        logger.info("Event listeners stopped")
