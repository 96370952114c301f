# core/domain/entities/base_entity.py
from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict

E = TypeVar("E", bound="MongoEntity")


def ms_to_iso(ts_ms: int) -> str:
    return datetime.fromtimestamp(int(ts_ms) / 1000, tz=timezone.utc).isoformat().replace("+00:00", "Z")


def epoch_to_iso(ts_sec: int) -> str:
    return ms_to_iso(int(ts_sec) * 1000)


class MongoEntity(BaseModel):
    """
    Base for documents persisted by the sync service.

    `_id` round-trips as the string `id`. Every timestamp is kept twice:
    epoch milliseconds for sorting and an ISO-8601 UTC string for humans.
    Unknown fields are preserved so documents written by other services
    survive a read/write cycle.
    """

    id: Optional[str] = None

    created_at: Optional[int] = None
    created_at_iso: Optional[str] = None
    updated_at: Optional[int] = None
    updated_at_iso: Optional[str] = None

    model_config = ConfigDict(extra="allow", use_enum_values=True)

    @staticmethod
    def now_ms() -> int:
        return int(time.time() * 1000)

    @staticmethod
    def now_iso() -> str:
        return ms_to_iso(MongoEntity.now_ms())

    @classmethod
    def update_stamp(cls, now_ms: Optional[int] = None) -> dict[str, Any]:
        """`$set` fragment marking a document as modified."""
        ts = cls.now_ms() if now_ms is None else int(now_ms)
        return {"updated_at": ts, "updated_at_iso": ms_to_iso(ts)}

    @classmethod
    def from_mongo(cls: Type[E], doc: Optional[dict[str, Any]]) -> Optional[E]:
        if not doc:
            return None
        data = dict(doc)
        if "_id" in data:
            data["id"] = str(data.pop("_id"))
        return cls.model_validate(data)

    def to_mongo(self) -> dict[str, Any]:
        # None fields are left out so $setOnInsert never writes explicit nulls
        data = self.model_dump(mode="python", exclude_none=True)
        if "id" in data:
            data["_id"] = data.pop("id")
        return data

    def touch_for_insert(self: E, now_ms: Optional[int] = None) -> E:
        stamp = self.update_stamp(now_ms)
        if self.created_at is None:
            self.created_at = stamp["updated_at"]
            self.created_at_iso = stamp["updated_at_iso"]
        self.updated_at = stamp["updated_at"]
        self.updated_at_iso = stamp["updated_at_iso"]
        return self
