# main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from adapters.entry.http.views.sync_admin_view import router as sync_admin_router
from adapters.external.database.mongo_client import close_mongo_client
from adapters.external.database.notification_repository_mongodb import NotificationRepositoryMongoDB
from adapters.external.database.vault_repository_mongodb import VaultRepositoryMongoDB
from config import get_settings
from core.use_cases.vault_sync_pipeline_usecase import VaultSyncPipeline

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    level = getattr(logging, (get_settings().LOG_LEVEL or "INFO").upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


async def init_mongo_indexes() -> None:
    """
    Make sure the collections written by the pipeline have their indexes
    (unique vault_id, transaction hash lookups) before any event is applied.
    """
    await VaultRepositoryMongoDB().ensure_indexes()
    await NotificationRepositoryMongoDB().ensure_indexes()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: indexes, then the sync pipeline in the background. The API
    serves while the node bring-up and historical catch-up run.
    """
    await init_mongo_indexes()

    pipeline = VaultSyncPipeline.from_settings()
    app.state.pipeline = pipeline
    pipeline.start_in_background()

    yield

    await pipeline.shutdown()
    await close_mongo_client()


def create_app() -> FastAPI:
    """
    Application factory for the vault sync service.
    """
    configure_logging()
    app = FastAPI(
        title="Vault Sync API",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(sync_admin_router, prefix="/api")

    return app


app = create_app()
