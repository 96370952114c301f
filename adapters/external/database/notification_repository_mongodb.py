# notification_repository_mongodb.py

from __future__ import annotations

from typing import Any, Dict, Optional

from pymongo.asynchronous.collection import AsyncCollection
from pymongo.asynchronous.database import AsyncDatabase

from adapters.external.database.helper_repo import sanitize_for_mongo
from adapters.external.database.mongo_client import get_mongo_db
from core.domain.entities.notification_entity import NotificationEntity
from core.domain.enums.vault_enums import NotificationPriority
from core.domain.repositories.notification_repository_interface import NotificationRepositoryInterface
from core.services.normalize import _norm_lower


class NotificationRepositoryMongoDB(NotificationRepositoryInterface):
    COLLECTION_NAME = "notifications"
    COLLECTION = COLLECTION_NAME

    def __init__(self, db: Optional[AsyncDatabase] = None, col: Optional[AsyncCollection] = None) -> None:
        if col is not None:
            self._col = col
            self._db = col.database
        else:
            self._db = db if db is not None else get_mongo_db()
            self._col = self._db[self.COLLECTION_NAME]

    async def ensure_indexes(self) -> None:
        await self._col.create_index([("user_id", 1), ("is_read", 1), ("created_at", -1)], name="ix_user_unread")
        await self._col.create_index([("expires_at", 1)], name="ix_expires_at")

    async def create_notification(
        self,
        user_id: str,
        user_address: str,
        kind: str,
        title: str,
        message: str,
        data: Optional[Dict[str, Any]] = None,
        priority: str = NotificationPriority.MEDIUM,
    ) -> NotificationEntity:
        entity = NotificationEntity(
            user_id=str(user_id),
            user_address=_norm_lower(user_address),
            kind=kind,
            title=title,
            message=message,
            data=dict(data or {}),
            priority=priority,
        ).touch_for_insert()

        doc = sanitize_for_mongo(entity.to_mongo())
        res = await self._col.insert_one(doc)
        entity.id = str(res.inserted_id)
        return entity
