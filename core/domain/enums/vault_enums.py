from __future__ import annotations

from enum import StrEnum


class VaultStatus(StrEnum):
    ACTIVE = "active"
    UNLOCKED = "unlocked"
    WITHDRAWN = "withdrawn"


class NotificationKind(StrEnum):
    VAULT_CREATED = "vault_created"
    DEPOSIT_CONFIRMED = "deposit_confirmed"
    WITHDRAWAL_CONFIRMED = "withdrawal_confirmed"
    SYSTEM_UPDATE = "system_update"


class NotificationPriority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class UserRole(StrEnum):
    USER = "user"
    ADMIN = "admin"


class VaultManagerEvent(StrEnum):
    """
    Events emitted by the VaultManager contract. Values match the ABI event names.
    """

    VAULT_CREATED = "VaultCreated"
    DEPOSITED = "Deposited"
    WITHDRAWN = "Withdrawn"
    PLATFORM_FEE_UPDATED = "PlatformFeeUpdated"
    FEE_RECIPIENT_UPDATED = "FeeRecipientUpdated"


# Replayed by historical sync. Admin events are live-only so that a replay
# does not re-broadcast them.
VAULT_EVENTS = (
    VaultManagerEvent.VAULT_CREATED,
    VaultManagerEvent.DEPOSITED,
    VaultManagerEvent.WITHDRAWN,
)

ALL_EVENTS = tuple(VaultManagerEvent)
