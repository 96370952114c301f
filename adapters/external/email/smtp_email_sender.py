from __future__ import annotations

import asyncio
import logging
import smtplib
import ssl
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Optional

from config import get_settings
from core.domain.entities.user_entity import UserEntity
from core.domain.entities.vault_entity import VaultEntity

logger = logging.getLogger(__name__)


@dataclass
class SmtpConfig:
    host: str
    port: int = 587
    username: str = ""
    password: str = ""
    sender: str = ""
    frontend_url: str = "http://localhost:3000"
    explorer_tx_url: str = "https://sepolia.etherscan.io/tx/"
    timeout_sec: float = 30.0


class SmtpEmailSender:
    """
    Transactional vault emails over SMTP (STARTTLS when the port is not 465).

    smtplib is blocking, so every send runs in a worker thread.
    """

    def __init__(self, config: SmtpConfig) -> None:
        self.config = config

    @classmethod
    def from_settings(cls) -> Optional["SmtpEmailSender"]:
        s = get_settings()
        if not s.EMAIL_HOST:
            logger.info("EMAIL_HOST not configured; vault emails disabled")
            return None
        return cls(
            SmtpConfig(
                host=s.EMAIL_HOST,
                port=int(s.EMAIL_PORT),
                username=s.EMAIL_USER,
                password=s.EMAIL_PASS,
                sender=s.EMAIL_FROM or s.EMAIL_USER,
                frontend_url=s.FRONTEND_URL,
                explorer_tx_url=s.EXPLORER_TX_URL,
            )
        )

    # ------------------------------------------------------------------ #
    # Messages
    # ------------------------------------------------------------------ #

    async def send_deposit_confirmation(
        self, user: UserEntity, vault: VaultEntity, amount: str, tx_hash: str
    ) -> None:
        body = (
            f"Hi {user.full_name or 'there'},\n\n"
            f"Your deposit of {amount} {vault.token_symbol} to vault #{vault.vault_id} "
            f"has been confirmed on-chain.\n\n"
            f"Transaction: {self.config.explorer_tx_url}{tx_hash}\n"
            f"Dashboard: {self.config.frontend_url}/dashboard\n"
        )
        await self._send(user, f"Deposit Confirmed - Vault #{vault.vault_id}", body)

    async def send_withdrawal_confirmation(
        self, user: UserEntity, vault: VaultEntity, amount: str, fee: str, tx_hash: str
    ) -> None:
        body = (
            f"Hi {user.full_name or 'there'},\n\n"
            f"You have withdrawn {amount} {vault.token_symbol} from vault #{vault.vault_id}.\n"
            f"Platform fee: {fee} {vault.token_symbol}\n\n"
            f"Transaction: {self.config.explorer_tx_url}{tx_hash}\n"
            f"Dashboard: {self.config.frontend_url}/dashboard\n"
        )
        await self._send(user, f"Withdrawal Successful - Vault #{vault.vault_id}", body)

    # ------------------------------------------------------------------ #
    # Transport
    # ------------------------------------------------------------------ #

    def _build(self, to_addr: str, subject: str, body: str) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = self.config.sender
        msg["To"] = to_addr
        msg["Subject"] = subject
        msg.set_content(body)
        return msg

    async def _send(self, user: UserEntity, subject: str, body: str) -> None:
        if not user.email:
            logger.debug("User %s has no email address, skipping '%s'", user.wallet_address, subject)
            return
        msg = self._build(user.email, subject, body)
        await asyncio.to_thread(self._smtp_send, msg)
        logger.info("Email '%s' sent to %s", subject, user.email)

    def _smtp_send(self, msg: EmailMessage) -> None:
        """Blocking SMTP send (called via to_thread)."""
        cfg = self.config
        context = ssl.create_default_context()
        if cfg.port == 465:
            with smtplib.SMTP_SSL(cfg.host, cfg.port, timeout=cfg.timeout_sec, context=context) as server:
                if cfg.username:
                    server.login(cfg.username, cfg.password)
                server.send_message(msg)
            return

        with smtplib.SMTP(cfg.host, cfg.port, timeout=cfg.timeout_sec) as server:
            server.starttls(context=context)
            if cfg.username:
                server.login(cfg.username, cfg.password)
            server.send_message(msg)
