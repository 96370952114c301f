from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from core.domain.entities.vault_entity import VaultDeposit, VaultEntity, VaultWithdrawal


class VaultRepositoryInterface(ABC):
    @abstractmethod
    async def ensure_indexes(self) -> None:
        raise NotImplementedError

    @abstractmethod
    async def find_vault_by_id(self, vault_id: str) -> Optional[VaultEntity]:
        raise NotImplementedError

    @abstractmethod
    async def upsert_vault(self, entity: VaultEntity) -> bool:
        """
        Create the vault if `vault_id` is unknown, otherwise leave the stored one untouched.

        Returns True when a new document was created.
        """
        raise NotImplementedError

    @abstractmethod
    async def append_deposit(self, vault_id: str, deposit: VaultDeposit) -> bool:
        """
        Push `deposit` unless a deposit with the same transaction hash exists.

        Must be atomic with respect to concurrent writers of the same vault.
        Returns True when the deposit was appended.
        """
        raise NotImplementedError

    @abstractmethod
    async def append_withdrawal(self, vault_id: str, withdrawal: VaultWithdrawal) -> bool:
        """
        Same contract as `append_deposit`. Also marks the vault withdrawn.
        """
        raise NotImplementedError

    @abstractmethod
    async def overwrite_from_chain(self, vault_id: str, *, balance: str, token_symbol: str) -> Optional[VaultEntity]:
        """
        Replace balance/symbol wholesale with upstream values (explicit resync).
        """
        raise NotImplementedError
