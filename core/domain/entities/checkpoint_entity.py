from __future__ import annotations

from .base_entity import MongoEntity

CHECKPOINT_KEY = "vault_manager"


class ProcessingCheckpointEntity(MongoEntity):
    """
    Collection: processing_checkpoints

    Singleton document (key = "vault_manager") holding the highest block
    height that was fully processed by historical sync.
    """

    key: str = CHECKPOINT_KEY
    last_processed_block: int = 0
