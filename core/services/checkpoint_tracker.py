from __future__ import annotations

import logging
from typing import Optional

from core.domain.repositories.checkpoint_repository_interface import CheckpointRepositoryInterface

logger = logging.getLogger(__name__)


class CheckpointTracker:
    """
    Highest block height confirmed fully processed by historical sync.

    `advance_to` only ever moves forward. `reset_floor` is the single explicit
    setter and is reserved for cold start.
    """

    def __init__(self, repository: Optional[CheckpointRepositoryInterface] = None, initial: int = 0) -> None:
        self._repository = repository
        self._last_processed_block = int(initial)

    @property
    def last_processed_block(self) -> int:
        return self._last_processed_block

    async def load(self) -> int:
        """
        Restore the persisted value (if any and higher than the in-memory one).
        """
        if self._repository is None:
            return self._last_processed_block
        stored = await self._repository.load()
        if stored is not None and int(stored) > self._last_processed_block:
            self._last_processed_block = int(stored)
            logger.info("Restored checkpoint at block %d", self._last_processed_block)
        return self._last_processed_block

    async def advance_to(self, block: int) -> bool:
        """
        Move the checkpoint to `block` if it is not behind the current value.

        Returns True when the checkpoint moved.
        """
        block = int(block)
        if block <= self._last_processed_block:
            return False

        self._last_processed_block = block
        if self._repository is not None:
            try:
                await self._repository.save(block)
            except Exception as exc:
                logger.warning("Failed to persist checkpoint %d: %s", block, exc)
        return True

    def reset_floor(self, block: int) -> None:
        logger.info("Checkpoint floor set to block %d", int(block))
        self._last_processed_block = int(block)
