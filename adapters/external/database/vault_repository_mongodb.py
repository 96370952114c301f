# vault_repository_mongodb.py

from __future__ import annotations

from typing import Optional

from pymongo import ReturnDocument
from pymongo.asynchronous.collection import AsyncCollection
from pymongo.asynchronous.database import AsyncDatabase
from pymongo.errors import DuplicateKeyError

from adapters.external.database.helper_repo import sanitize_for_mongo
from adapters.external.database.mongo_client import get_mongo_db
from core.domain.entities.base_entity import MongoEntity
from core.domain.entities.vault_entity import VaultDeposit, VaultEntity, VaultWithdrawal
from core.domain.enums.vault_enums import VaultStatus
from core.domain.repositories.vault_repository_interface import VaultRepositoryInterface


class VaultRepositoryMongoDB(VaultRepositoryInterface):
    COLLECTION_NAME = "vaults"
    COLLECTION = COLLECTION_NAME

    def __init__(self, db: Optional[AsyncDatabase] = None, col: Optional[AsyncCollection] = None) -> None:
        if col is not None:
            self._col = col
            self._db = col.database
        else:
            self._db = db if db is not None else get_mongo_db()
            self._col = self._db[self.COLLECTION_NAME]

    @property
    def collection(self) -> AsyncCollection:
        return self._col

    async def ensure_indexes(self) -> None:
        await self._col.create_index([("vault_id", 1)], unique=True, name="ux_vault_id")
        await self._col.create_index([("user_address", 1), ("created_at", -1)], name="ix_user_created_desc")
        await self._col.create_index([("deposits.transaction_hash", 1)], name="ix_deposit_tx")
        await self._col.create_index([("withdrawals.transaction_hash", 1)], name="ix_withdrawal_tx")

    async def find_vault_by_id(self, vault_id: str) -> Optional[VaultEntity]:
        doc = await self._col.find_one({"vault_id": str(vault_id)})
        return VaultEntity.from_mongo(doc)

    async def upsert_vault(self, entity: VaultEntity) -> bool:
        entity = entity.touch_for_insert()
        doc = sanitize_for_mongo(entity.to_mongo())
        doc.pop("_id", None)
        try:
            res = await self._col.update_one(
                {"vault_id": entity.vault_id},
                {"$setOnInsert": doc},
                upsert=True,
            )
        except DuplicateKeyError:
            # concurrent upsert of the same vault_id won the race
            return False
        return res.upserted_id is not None

    async def append_deposit(self, vault_id: str, deposit: VaultDeposit) -> bool:
        res = await self._col.update_one(
            {"vault_id": str(vault_id), "deposits.transaction_hash": {"$ne": deposit.transaction_hash}},
            {
                "$push": {"deposits": sanitize_for_mongo(deposit.model_dump(mode="python"))},
                "$set": MongoEntity.update_stamp(),
            },
        )
        return res.modified_count == 1

    async def append_withdrawal(self, vault_id: str, withdrawal: VaultWithdrawal) -> bool:
        res = await self._col.update_one(
            {"vault_id": str(vault_id), "withdrawals.transaction_hash": {"$ne": withdrawal.transaction_hash}},
            {
                "$push": {"withdrawals": sanitize_for_mongo(withdrawal.model_dump(mode="python"))},
                "$set": {
                    "status": VaultStatus.WITHDRAWN.value,
                    "withdrawn_at": int(withdrawal.timestamp),
                    **MongoEntity.update_stamp(),
                },
            },
        )
        return res.modified_count == 1

    async def overwrite_from_chain(self, vault_id: str, *, balance: str, token_symbol: str) -> Optional[VaultEntity]:
        doc = await self._col.find_one_and_update(
            {"vault_id": str(vault_id)},
            {"$set": {"balance": str(balance), "token_symbol": str(token_symbol), **MongoEntity.update_stamp()}},
            return_document=ReturnDocument.AFTER,
        )
        return VaultEntity.from_mongo(doc)
