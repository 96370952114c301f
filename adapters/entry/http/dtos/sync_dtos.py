from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class SyncGapOut(BaseModel):
    from_block: int
    to_block: int
    recorded_at_ms: int


class LastSyncOut(BaseModel):
    from_block: int
    to_block: int
    windows: int
    events_applied: int
    events_failed: int
    skipped_oversized: bool
    completed: bool


class SyncStatusOut(BaseModel):
    enabled: bool
    connection: Dict[str, Any]
    last_processed_block: int
    sync_running: bool
    catch_up_running: bool = False
    last_sync: Optional[LastSyncOut] = None
    gaps: List[SyncGapOut] = Field(default_factory=list)
    events: Dict[str, int]
    periodic: Dict[str, Any]
    executor: Dict[str, Dict[str, Any]] = Field(default_factory=dict, description="per endpoint key pacing state")


class ReinitializeOut(BaseModel):
    ok: bool
    connection: Dict[str, Any]


class ContractInfoOut(BaseModel):
    address: str
    next_vault_id: str
    platform_fee_rate: str
    fee_recipient: str
    owner: str
    supports_eth: bool


class VaultResyncOut(BaseModel):
    vault_id: str
    user_address: str
    token_address: str
    token_symbol: str
    balance: str = Field(..., description="display units")
    status: str
    unlock_time: int
    deposits: int
    withdrawals: int
