from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional


class CheckpointRepositoryInterface(ABC):
    @abstractmethod
    async def load(self) -> Optional[int]:
        """
        Return the stored last processed block, or None if nothing was stored yet.
        """
        raise NotImplementedError

    @abstractmethod
    async def save(self, block: int) -> None:
        """
        Store `block` unless the stored value is already higher.
        """
        raise NotImplementedError
