from __future__ import annotations

from typing import Protocol

from core.domain.entities.user_entity import UserEntity
from core.domain.entities.vault_entity import VaultEntity


class EmailSenderInterface(Protocol):
    async def send_deposit_confirmation(
        self, user: UserEntity, vault: VaultEntity, amount: str, tx_hash: str
    ) -> None:
        ...

    async def send_withdrawal_confirmation(
        self, user: UserEntity, vault: VaultEntity, amount: str, fee: str, tx_hash: str
    ) -> None:
        ...
