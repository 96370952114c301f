"""
Turns decoded VaultManager events into vault mutations + notifications.

Application is idempotent per (vault, transaction hash): appends are
conditional writes, serialized per vault, and notifications/emails are only
sent for writes that actually happened. `apply()` isolates failures: it logs
and returns False instead of raising, so one bad event never stops a batch.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

from core.domain.entities.base_entity import MongoEntity, epoch_to_iso
from core.domain.entities.user_entity import UserEntity
from core.domain.entities.vault_entity import VaultDeposit, VaultEntity, VaultWithdrawal
from core.domain.enums.vault_enums import (
    NotificationKind,
    NotificationPriority,
    UserRole,
    VaultManagerEvent,
    VaultStatus,
)
from core.domain.errors import VaultNotFoundError
from core.domain.gateways.email_sender_interface import EmailSenderInterface
from core.domain.repositories.notification_repository_interface import NotificationRepositoryInterface
from core.domain.repositories.user_repository_interface import UserRepositoryInterface
from core.domain.repositories.vault_repository_interface import VaultRepositoryInterface
from core.domain.schemas.onchain_types import ChainEvent
from core.services.normalize import _norm_lower, format_units
from core.services.token_resolver import TokenResolver

logger = logging.getLogger(__name__)

DASHBOARD_URL = "/dashboard"
ADMIN_SETTINGS_URL = "/admin/settings"


def _unlock_date(ts_sec: int) -> str:
    return datetime.fromtimestamp(int(ts_sec), tz=timezone.utc).strftime("%Y-%m-%d")


class VaultEventApplier:
    def __init__(
        self,
        vaults: VaultRepositoryInterface,
        users: UserRepositoryInterface,
        notifications: NotificationRepositoryInterface,
        tokens: TokenResolver,
        email: Optional[EmailSenderInterface] = None,
        *,
        now_ms: Callable[[], int] = MongoEntity.now_ms,
    ) -> None:
        self._vaults = vaults
        self._users = users
        self._notifications = notifications
        self._tokens = tokens
        self._email = email
        self._now_ms = now_ms

        # vault id -> (lock, holders + waiters); dropped once nobody uses it
        self._vault_locks: Dict[str, List[Any]] = {}
        self._in_flight = 0
        self._idle = asyncio.Event()
        self._idle.set()

        self.applied = 0
        self.failed = 0

        self._handlers: Dict[str, Callable[[ChainEvent], Awaitable[None]]] = {
            VaultManagerEvent.VAULT_CREATED: self._on_vault_created,
            VaultManagerEvent.DEPOSITED: self._on_deposited,
            VaultManagerEvent.WITHDRAWN: self._on_withdrawn,
            VaultManagerEvent.PLATFORM_FEE_UPDATED: self._on_platform_fee_updated,
            VaultManagerEvent.FEE_RECIPIENT_UPDATED: self._on_fee_recipient_updated,
        }

    # ------------------------------------------------------------------ #
    # Entry point
    # ------------------------------------------------------------------ #

    async def apply(self, event: ChainEvent) -> bool:
        """
        Apply one decoded event. Returns False (after logging) on any failure.
        """
        handler = self._handlers.get(event.name)
        if handler is None:
            logger.warning("Ignoring unsupported event %s (tx %s)", event.name, event.transaction_hash)
            return False

        self._in_flight += 1
        self._idle.clear()
        try:
            await handler(event)
            self.applied += 1
            return True
        except VaultNotFoundError as exc:
            self.failed += 1
            logger.error("%s dropped (tx %s): %s", event.name, event.transaction_hash, exc)
            return False
        except Exception:
            self.failed += 1
            logger.exception(
                "Error handling %s event (tx %s, block %d)",
                event.name,
                event.transaction_hash,
                event.block_number,
            )
            return False
        finally:
            self._in_flight -= 1
            if self._in_flight == 0:
                self._idle.set()

    async def drain(self) -> None:
        """
        Wait until no event is being applied.
        """
        await self._idle.wait()

    @asynccontextmanager
    async def _vault_lock(self, vault_id: str) -> AsyncIterator[None]:
        entry = self._vault_locks.get(vault_id)
        if entry is None:
            entry = self._vault_locks[vault_id] = [asyncio.Lock(), 0]
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                del self._vault_locks[vault_id]

    # ------------------------------------------------------------------ #
    # Vault events
    # ------------------------------------------------------------------ #

    async def _on_vault_created(self, event: ChainEvent) -> None:
        args = event.args
        vault_id = str(int(args["vaultId"]))
        user = _norm_lower(args["user"])
        token = _norm_lower(args["token"])
        unlock_time = int(args["unlockTime"])
        logger.info("VaultCreated: id=%s user=%s token=%s", vault_id, user, token)

        symbol = await self._tokens.symbol(token)
        decimals = await self._tokens.decimals(token)

        entity = VaultEntity(
            vault_id=vault_id,
            user_address=user,
            token_address=token,
            token_symbol=symbol,
            token_decimals=decimals,
            balance="0",
            unlock_time=unlock_time,
            unlock_time_iso=epoch_to_iso(unlock_time),
            status=VaultStatus.ACTIVE,
            creation_transaction_hash=event.transaction_hash,
            creation_block_number=event.block_number,
        )
        async with self._vault_lock(vault_id):
            created = await self._vaults.upsert_vault(entity)

        if not created:
            logger.debug("Vault %s already mirrored, skipping notification", vault_id)
            return

        await self._notify_owner(
            user,
            NotificationKind.VAULT_CREATED,
            "Vault Created Successfully",
            f"Your new {symbol} vault #{vault_id} has been created and will unlock on {_unlock_date(unlock_time)}.",
            {
                "vault_id": vault_id,
                "transaction_hash": event.transaction_hash,
                "token_symbol": symbol,
                "unlock_time": unlock_time,
                "action_url": DASHBOARD_URL,
            },
        )
        logger.info("Vault %s created and saved", vault_id)

    async def _on_deposited(self, event: ChainEvent) -> None:
        args = event.args
        vault_id = str(int(args["vaultId"]))
        user = _norm_lower(args["user"])
        token = _norm_lower(args["token"])
        logger.info("Deposited: vault=%s user=%s amount_raw=%s", vault_id, user, args["amount"])

        symbol = await self._tokens.symbol(token)
        decimals = await self._tokens.decimals(token)
        amount = format_units(args["amount"], decimals)

        deposit = VaultDeposit(
            amount=amount,
            transaction_hash=event.transaction_hash,
            block_number=event.block_number,
            timestamp=self._now_ms(),
        )
        async with self._vault_lock(vault_id):
            vault = await self._vaults.find_vault_by_id(vault_id)
            if vault is None:
                raise VaultNotFoundError(vault_id)
            appended = await self._vaults.append_deposit(vault_id, deposit)

        if not appended:
            logger.info("Deposit %s already recorded for vault %s", event.transaction_hash, vault_id)
            return

        owner = await self._notify_owner(
            user,
            NotificationKind.DEPOSIT_CONFIRMED,
            "Deposit Confirmed",
            f"Your deposit of {amount} {symbol} to vault #{vault_id} has been confirmed.",
            {
                "vault_id": vault_id,
                "transaction_hash": event.transaction_hash,
                "amount": amount,
                "token_symbol": symbol,
                "action_url": DASHBOARD_URL,
            },
        )
        if owner is not None and owner.notification_preferences.email.deposits and self._email is not None:
            await self._send_email(
                "deposit confirmation",
                self._email.send_deposit_confirmation(owner, vault, amount, event.transaction_hash),
            )
        logger.info("Deposit %s %s processed for vault %s", amount, symbol, vault_id)

    async def _on_withdrawn(self, event: ChainEvent) -> None:
        args = event.args
        vault_id = str(int(args["vaultId"]))
        user = _norm_lower(args["user"])
        token = _norm_lower(args["token"])
        logger.info(
            "Withdrawn: vault=%s user=%s amount_raw=%s fee_raw=%s",
            vault_id,
            user,
            args["amount"],
            args["platformFee"],
        )

        symbol = await self._tokens.symbol(token)
        decimals = await self._tokens.decimals(token)
        amount = format_units(args["amount"], decimals)
        fee = format_units(args["platformFee"], decimals)

        withdrawal = VaultWithdrawal.build(
            amount=amount,
            platform_fee=fee,
            transaction_hash=event.transaction_hash,
            block_number=event.block_number,
            timestamp=self._now_ms(),
        )
        async with self._vault_lock(vault_id):
            vault = await self._vaults.find_vault_by_id(vault_id)
            if vault is None:
                raise VaultNotFoundError(vault_id)
            appended = await self._vaults.append_withdrawal(vault_id, withdrawal)

        if not appended:
            logger.info("Withdrawal %s already recorded for vault %s", event.transaction_hash, vault_id)
            return

        owner = await self._notify_owner(
            user,
            NotificationKind.WITHDRAWAL_CONFIRMED,
            "Withdrawal Successful",
            f"You have successfully withdrawn {amount} {symbol} from vault #{vault_id}. "
            f"Platform fee: {fee} {symbol}",
            {
                "vault_id": vault_id,
                "transaction_hash": event.transaction_hash,
                "amount": amount,
                "fee": fee,
                "token_symbol": symbol,
                "action_url": DASHBOARD_URL,
            },
        )
        if owner is not None and owner.notification_preferences.email.withdrawals and self._email is not None:
            await self._send_email(
                "withdrawal confirmation",
                self._email.send_withdrawal_confirmation(owner, vault, amount, fee, event.transaction_hash),
            )
        logger.info("Withdrawal %s %s processed for vault %s", amount, symbol, vault_id)

    # ------------------------------------------------------------------ #
    # Admin events
    # ------------------------------------------------------------------ #

    async def _on_platform_fee_updated(self, event: ChainEvent) -> None:
        old_rate = event.args["oldFeeRate"]
        new_rate = event.args["newFeeRate"]
        logger.info("Platform fee updated: %s -> %s", old_rate, new_rate)
        await self._broadcast_admins(
            "Platform Fee Updated",
            f"Platform fee rate has been updated from {old_rate}% to {new_rate}%.",
            {
                "transaction_hash": event.transaction_hash,
                "old_fee_rate": str(old_rate),
                "new_fee_rate": str(new_rate),
                "action_url": ADMIN_SETTINGS_URL,
            },
        )

    async def _on_fee_recipient_updated(self, event: ChainEvent) -> None:
        old_recipient = str(event.args["oldRecipient"])
        new_recipient = str(event.args["newRecipient"])
        logger.info("Fee recipient updated: %s -> %s", old_recipient, new_recipient)
        await self._broadcast_admins(
            "Fee Recipient Updated",
            f"Platform fee recipient has been updated to {new_recipient}.",
            {
                "transaction_hash": event.transaction_hash,
                "old_recipient": old_recipient,
                "new_recipient": new_recipient,
                "action_url": ADMIN_SETTINGS_URL,
            },
        )

    # ------------------------------------------------------------------ #
    # Notifications
    # ------------------------------------------------------------------ #

    async def _notify_owner(
        self,
        address: str,
        kind: NotificationKind,
        title: str,
        message: str,
        data: Dict[str, Any],
    ) -> Optional[UserEntity]:
        """
        Best-effort in-app notification. Returns the local user, or None when unknown.
        """
        user = await self._users.find_user_by_address(address)
        if user is None:
            return None
        try:
            await self._notifications.create_notification(
                str(user.id),
                address,
                kind,
                title,
                message,
                data,
                NotificationPriority.MEDIUM,
            )
        except Exception as exc:
            logger.error("Failed to create %s notification for %s: %s", kind, address, exc)
        return user

    async def _broadcast_admins(self, title: str, message: str, data: Dict[str, Any]) -> None:
        admins = await self._users.find_users_by_role(UserRole.ADMIN)
        for admin in admins:
            try:
                await self._notifications.create_notification(
                    str(admin.id),
                    _norm_lower(admin.wallet_address),
                    NotificationKind.SYSTEM_UPDATE,
                    title,
                    message,
                    data,
                    NotificationPriority.HIGH,
                )
            except Exception as exc:
                logger.error("Failed to notify admin %s: %s", admin.id, exc)
        logger.info("%s broadcast to %d admin(s)", title, len(admins))

    @staticmethod
    async def _send_email(label: str, send: Awaitable[None]) -> None:
        try:
            await send
        except Exception as exc:
            logger.error("Failed to send %s email: %s", label, exc)
