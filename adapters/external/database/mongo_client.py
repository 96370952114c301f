# adapters/external/database/mongo_client.py

from __future__ import annotations

from typing import Optional

from pymongo import AsyncMongoClient
from pymongo.asynchronous.database import AsyncDatabase

from config import get_settings

_client: Optional[AsyncMongoClient] = None
_db: Optional[AsyncDatabase] = None


def get_mongo_client() -> AsyncMongoClient:
    """
    Return a singleton AsyncMongoClient configured from MONGO_URI.

    The client connects lazily on first use, so building it outside a running
    event loop is fine.
    """
    global _client
    if _client is None:
        settings = get_settings()
        uri = getattr(settings, "MONGO_URI", None)
        if not uri:
            raise RuntimeError(
                "MONGO_URI is not configured. Please set it in your settings "
                "so the sync pipeline can connect to MongoDB."
            )
        _client = AsyncMongoClient(uri, tz_aware=True)
    return _client


def get_mongo_db() -> AsyncDatabase:
    """
    Return the database named by MONGO_DB, shared by every repository.
    """
    global _db
    if _db is None:
        settings = get_settings()
        db_name = getattr(settings, "MONGO_DB", None)
        if not db_name:
            raise RuntimeError(
                "MONGO_DB is not configured. Please set it in your settings "
                "so the sync pipeline can select a MongoDB database."
            )
        _db = get_mongo_client()[db_name]
    return _db


async def close_mongo_client() -> None:
    global _client, _db
    client = _client
    _client = None
    _db = None
    if client is not None:
        await client.close()
