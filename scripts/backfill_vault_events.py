# scripts/backfill_vault_events.py

"""
Operator script that replays VaultManager events for an explicit block range.

Historical sync skips ranges wider than its ceiling (they show up as gaps in
GET /api/sync/status). This script replays such a range in ceiling-sized
chunks. Application is idempotent, so overlapping an already processed range
is harmless.

Usage (from project root):

    python -m scripts.backfill_vault_events --from-block 5200000 --to-block 5260000

The persisted checkpoint is never touched: the replay runs on a private,
in-memory checkpoint.
"""

from __future__ import annotations

import argparse
import asyncio
import logging

from adapters.chain.vault_manager import VaultManagerAdapter
from adapters.external.database.mongo_client import close_mongo_client
from adapters.external.database.notification_repository_mongodb import NotificationRepositoryMongoDB
from adapters.external.database.user_repository_mongodb import UserRepositoryMongoDB
from adapters.external.database.vault_repository_mongodb import VaultRepositoryMongoDB
from config import get_settings
from core.services.checkpoint_tracker import CheckpointTracker
from core.services.connection_manager import ConnectionManager
from core.services.event_applier import VaultEventApplier
from core.services.historical_sync import HistoricalSyncEngine
from core.services.request_executor import RequestExecutor
from core.services.token_resolver import TokenResolver

logger = logging.getLogger("backfill_vault_events")


async def backfill(from_block: int, to_block: int, *, notify: bool) -> int:
    """
    Replay [from_block, to_block]. Returns the number of failed events.
    """
    s = get_settings()
    if not s.RPC_URL or not s.CONTRACT_ADDRESS:
        raise RuntimeError("RPC_URL and CONTRACT_ADDRESS must be configured to backfill.")

    executor = RequestExecutor.from_settings(s)
    connection = ConnectionManager(lambda: VaultManagerAdapter.from_rpc(s.RPC_URL, s.CONTRACT_ADDRESS), executor)
    vaults = VaultRepositoryMongoDB()
    notifications = NotificationRepositoryMongoDB()
    # without --notify, replayed events resolve no recipients
    users = UserRepositoryMongoDB() if notify else _NoUsers()
    tokens = TokenResolver(connection, executor)
    applier = VaultEventApplier(vaults, users, notifications, tokens)

    engine = HistoricalSyncEngine(
        connection,
        executor,
        applier,
        CheckpointTracker(initial=from_block - 1),
        batch_size=s.SYNC_BATCH_SIZE,
        max_block_range=s.SYNC_MAX_BLOCK_RANGE,
    )

    failed = 0
    chunk = engine.range_ceiling
    start = from_block
    try:
        await connection.connect()
        await vaults.ensure_indexes()
        while start <= to_block:
            end = min(start + chunk, to_block)
            report = await engine.sync_range(start, end)
            failed += report.events_failed
            logger.info(
                "Blocks %d-%d: applied=%d failed=%d completed=%s",
                start,
                end,
                report.events_applied,
                report.events_failed,
                report.completed,
            )
            if not report.completed:
                logger.error("Backfill stopped at block %d: %s", report.checkpoint or start, report.errors[-1:])
                return failed + 1
            start = end + 1
    finally:
        await connection.close()
        await close_mongo_client()
    return failed


class _NoUsers:
    async def find_user_by_address(self, address):
        return None

    async def find_users_by_role(self, role):
        return []


def main() -> None:
    parser = argparse.ArgumentParser(description="Replay VaultManager events for a block range into MongoDB.")
    parser.add_argument("--from-block", type=int, required=True)
    parser.add_argument("--to-block", type=int, required=True)
    parser.add_argument(
        "--notify",
        action="store_true",
        help="Create notifications for newly recorded events (off by default).",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
    )

    if args.to_block < args.from_block:
        parser.error("--to-block must be >= --from-block")

    failed = asyncio.run(backfill(args.from_block, args.to_block, notify=args.notify))
    logger.info("Backfill finished (%d failed events).", failed)
    if failed:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
