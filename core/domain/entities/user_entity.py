from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from core.domain.enums.vault_enums import UserRole
from .base_entity import MongoEntity


class EmailPreferences(BaseModel):
    deposits: bool = True
    withdrawals: bool = True

    model_config = ConfigDict(extra="allow")


class NotificationPreferences(BaseModel):
    email: EmailPreferences = Field(default_factory=EmailPreferences)

    model_config = ConfigDict(extra="allow")


class UserEntity(MongoEntity):
    """
    Collection: users (owned by the account service, read-only here).
    """

    wallet_address: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    role: UserRole = UserRole.USER
    notification_preferences: NotificationPreferences = Field(default_factory=NotificationPreferences)
