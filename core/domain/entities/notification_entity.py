from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import Field

from core.domain.enums.vault_enums import NotificationKind, NotificationPriority
from .base_entity import MongoEntity

NOTIFICATION_TTL_MS = 30 * 24 * 60 * 60 * 1000


class NotificationEntity(MongoEntity):
    """
    Collection: notifications

    In-app notification for one user. Expires 30 days after creation.
    """

    user_id: str
    user_address: str
    kind: NotificationKind
    title: str = Field(..., max_length=100)
    message: str = Field(..., max_length=500)
    data: Dict[str, Any] = Field(default_factory=dict)
    priority: NotificationPriority = NotificationPriority.MEDIUM
    is_read: bool = False
    expires_at: Optional[int] = None

    def touch_for_insert(self, now_ms: Optional[int] = None) -> "NotificationEntity":
        super().touch_for_insert(now_ms)
        if self.expires_at is None:
            self.expires_at = int(self.created_at or self.now_ms()) + NOTIFICATION_TTL_MS
        return self
