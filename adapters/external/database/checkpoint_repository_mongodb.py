# checkpoint_repository_mongodb.py

from __future__ import annotations

from typing import Optional

from pymongo.asynchronous.collection import AsyncCollection
from pymongo.asynchronous.database import AsyncDatabase

from adapters.external.database.mongo_client import get_mongo_db
from core.domain.entities.base_entity import MongoEntity
from core.domain.entities.checkpoint_entity import CHECKPOINT_KEY, ProcessingCheckpointEntity
from core.domain.repositories.checkpoint_repository_interface import CheckpointRepositoryInterface


class CheckpointRepositoryMongoDB(CheckpointRepositoryInterface):
    COLLECTION_NAME = "processing_checkpoints"
    COLLECTION = COLLECTION_NAME

    def __init__(
        self,
        db: Optional[AsyncDatabase] = None,
        col: Optional[AsyncCollection] = None,
        key: str = CHECKPOINT_KEY,
    ) -> None:
        if col is not None:
            self._col = col
            self._db = col.database
        else:
            self._db = db if db is not None else get_mongo_db()
            self._col = self._db[self.COLLECTION_NAME]
        self.key = key

    async def load(self) -> Optional[int]:
        entity = ProcessingCheckpointEntity.from_mongo(await self._col.find_one({"key": self.key}))
        if entity is None:
            return None
        return int(entity.last_processed_block)

    async def save(self, block: int) -> None:
        stamp = MongoEntity.update_stamp()
        # $max keeps the stored value monotonic across concurrent writers
        await self._col.update_one(
            {"key": self.key},
            {
                "$max": {"last_processed_block": int(block)},
                "$set": stamp,
                "$setOnInsert": {"created_at": stamp["updated_at"], "created_at_iso": stamp["updated_at_iso"]},
            },
            upsert=True,
        )
