from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from core.domain.entities.notification_entity import NotificationEntity
from core.domain.enums.vault_enums import NotificationPriority


class NotificationRepositoryInterface(ABC):
    @abstractmethod
    async def ensure_indexes(self) -> None:
        raise NotImplementedError

    @abstractmethod
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
        raise NotImplementedError
