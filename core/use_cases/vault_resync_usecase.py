from __future__ import annotations

import logging

from core.domain.entities.base_entity import epoch_to_iso
from core.domain.entities.vault_entity import VaultEntity
from core.domain.enums.vault_enums import VaultStatus
from core.domain.errors import VaultNotFoundError
from core.domain.repositories.vault_repository_interface import VaultRepositoryInterface
from core.domain.schemas.onchain_types import ContractInfo
from core.services.connection_manager import ConnectionManager
from core.services.normalize import _norm_lower, format_units
from core.services.request_executor import RPC_ENDPOINT, RequestExecutor
from core.services.token_resolver import TokenResolver

logger = logging.getLogger(__name__)


class VaultResyncUseCase:
    """
    Admin-side reads straight from the VaultManager contract.
    """

    def __init__(
        self,
        connection: ConnectionManager,
        executor: RequestExecutor,
        vaults: VaultRepositoryInterface,
        tokens: TokenResolver,
    ) -> None:
        self._connection = connection
        self._executor = executor
        self._vaults = vaults
        self._tokens = tokens

    async def _call(self, fn_name: str, *args):
        gateway = self._connection.gateway
        return await self._executor.execute(RPC_ENDPOINT, lambda: gateway.call_view(fn_name, *args))

    async def resync_vault(self, vault_id: str) -> VaultEntity:
        """
        Overwrite the stored balance/symbol with the on-chain values.

        A vault missing locally is created from chain data. Raises
        VaultNotFoundError when the contract does not know the id.
        """
        vid = str(int(vault_id))
        gateway = self._connection.gateway
        onchain = await self._executor.execute(RPC_ENDPOINT, lambda: gateway.get_vault(int(vid)))
        if not onchain.exists:
            raise VaultNotFoundError(vid)

        token = _norm_lower(onchain.token)
        symbol = await self._tokens.symbol(token)
        decimals = await self._tokens.decimals(token)
        balance = format_units(onchain.balance_raw, decimals)

        created = await self._vaults.upsert_vault(
            VaultEntity(
                vault_id=vid,
                user_address=_norm_lower(onchain.user),
                token_address=token,
                token_symbol=symbol,
                token_decimals=decimals,
                balance=balance,
                unlock_time=onchain.unlock_time,
                unlock_time_iso=epoch_to_iso(onchain.unlock_time),
                status=VaultStatus.ACTIVE,
            )
        )
        if created:
            logger.info("Vault %s created from chain during resync", vid)

        updated = await self._vaults.overwrite_from_chain(vid, balance=balance, token_symbol=symbol)
        if updated is None:
            raise VaultNotFoundError(vid)
        logger.info("Vault %s resynced: balance=%s %s", vid, balance, symbol)
        return updated

    async def contract_info(self) -> ContractInfo:
        gateway = self._connection.gateway
        return ContractInfo(
            address=gateway.address,
            next_vault_id=str(await self._call("nextVaultId")),
            platform_fee_rate=str(await self._call("platformFeeRate")),
            fee_recipient=str(await self._call("feeRecipient")),
            owner=str(await self._call("owner")),
            supports_eth=bool(await self._call("supportsETH")),
        )
