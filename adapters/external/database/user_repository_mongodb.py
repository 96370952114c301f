# user_repository_mongodb.py

from __future__ import annotations

from typing import List, Optional

from pymongo.asynchronous.collection import AsyncCollection
from pymongo.asynchronous.database import AsyncDatabase

from adapters.external.database.mongo_client import get_mongo_db
from core.domain.entities.user_entity import UserEntity
from core.domain.repositories.user_repository_interface import UserRepositoryInterface
from core.services.normalize import _norm_lower


class UserRepositoryMongoDB(UserRepositoryInterface):
    """
    Read-only view over the account service's `users` collection.
    """

    COLLECTION_NAME = "users"
    COLLECTION = COLLECTION_NAME

    def __init__(self, db: Optional[AsyncDatabase] = None, col: Optional[AsyncCollection] = None) -> None:
        if col is not None:
            self._col = col
            self._db = col.database
        else:
            self._db = db if db is not None else get_mongo_db()
            self._col = self._db[self.COLLECTION_NAME]

    async def find_user_by_address(self, address: str) -> Optional[UserEntity]:
        doc = await self._col.find_one({"wallet_address": _norm_lower(address)})
        return UserEntity.from_mongo(doc)

    async def find_users_by_role(self, role: str) -> List[UserEntity]:
        docs = await self._col.find({"role": str(role)}).to_list()
        return [UserEntity.from_mongo(d) for d in docs if d]
