from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from pydantic import BaseModel


@dataclass(frozen=True)
class ChainEvent:
    """
    One decoded VaultManager log.

    `args` holds the ABI-named event arguments with raw integer amounts.
    """

    name: str
    args: Dict[str, Any]
    block_number: int
    transaction_hash: str
    transaction_index: int = 0
    log_index: int = 0

    @property
    def chain_position(self) -> tuple[int, int, int]:
        return (self.block_number, self.transaction_index, self.log_index)


@dataclass
class SyncGap:
    """
    A block range that historical sync skipped on purpose (range above the ceiling).
    """

    from_block: int
    to_block: int
    recorded_at_ms: int

    @property
    def size(self) -> int:
        return self.to_block - self.from_block


@dataclass
class SyncReport:
    from_block: int
    to_block: int
    windows: int = 0
    events_applied: int = 0
    events_failed: int = 0
    skipped_oversized: bool = False
    completed: bool = True
    checkpoint: Optional[int] = None
    errors: list[str] = field(default_factory=list)


class OnchainVault(BaseModel):
    vault_id: str
    user: str
    token: str
    balance_raw: int
    unlock_time: int
    exists: bool


class ContractInfo(BaseModel):
    address: str
    next_vault_id: str
    platform_fee_rate: str
    fee_recipient: str
    owner: str
    supports_eth: bool
