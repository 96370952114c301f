from __future__ import annotations

from decimal import Decimal, localcontext
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from core.domain.enums.vault_enums import VaultStatus
from core.services.normalize import decimal_str
from .base_entity import MongoEntity


class VaultDeposit(BaseModel):
    amount: str  # display units
    transaction_hash: str
    block_number: int
    timestamp: int  # ms

    model_config = ConfigDict(extra="allow")


class VaultWithdrawal(BaseModel):
    amount: str
    platform_fee: str = "0"
    net_amount: str
    transaction_hash: str
    block_number: int
    timestamp: int

    model_config = ConfigDict(extra="allow")

    @classmethod
    def build(cls, *, amount: str, platform_fee: str, transaction_hash: str, block_number: int, timestamp: int) -> "VaultWithdrawal":
        with localcontext() as ctx:
            ctx.prec = 80
            net = Decimal(amount) - Decimal(platform_fee)
        return cls(
            amount=amount,
            platform_fee=platform_fee,
            net_amount=decimal_str(net),
            transaction_hash=transaction_hash,
            block_number=block_number,
            timestamp=timestamp,
        )


class VaultEntity(MongoEntity):
    """
    Collection: vaults

    Mirror of one VaultManager vault. `vault_id` is the on-chain id and never changes.
    Deposits and withdrawals are append-only; a transaction hash appears at most
    once per vault in each list.
    """

    vault_id: str
    user_address: str
    token_address: str
    token_symbol: str = "UNKNOWN"
    token_decimals: int = 18

    balance: str = "0"
    unlock_time: int  # epoch seconds, fixed at creation
    unlock_time_iso: Optional[str] = None
    status: VaultStatus = VaultStatus.ACTIVE
    withdrawn_at: Optional[int] = None

    deposits: List[VaultDeposit] = Field(default_factory=list)
    withdrawals: List[VaultWithdrawal] = Field(default_factory=list)

    creation_transaction_hash: Optional[str] = None
    creation_block_number: Optional[int] = None

    def has_deposit(self, tx_hash: str) -> bool:
        return any(d.transaction_hash == tx_hash for d in self.deposits)

    def has_withdrawal(self, tx_hash: str) -> bool:
        return any(w.transaction_hash == tx_hash for w in self.withdrawals)
