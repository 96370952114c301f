from __future__ import annotations

from typing import Any, Dict, List, Protocol

from core.domain.schemas.onchain_types import ChainEvent, OnchainVault


class VaultManagerGatewayInterface(Protocol):
    """
    Read-only view of the node + VaultManager contract.

    Every method performs at most one RPC round trip so that callers can route
    each call through the request executor individually.
    """

    address: str

    async def get_chain_id(self) -> int:
        ...

    async def get_block_number(self) -> int:
        ...

    async def get_code(self) -> bytes:
        ...

    async def get_logs(self, event_name: str, from_block: int, to_block: int) -> List[Dict[str, Any]]:
        ...

    async def create_filter(self, event_name: str) -> str:
        ...

    async def get_filter_changes(self, filter_id: str) -> List[Dict[str, Any]]:
        ...

    def decode(self, event_name: str, raw_log: Dict[str, Any]) -> ChainEvent:
        """
        Decode one raw log. Raises DecodingError.
        """
        ...

    async def token_symbol(self, token: str) -> str:
        ...

    async def token_decimals(self, token: str) -> int:
        ...

    async def get_vault(self, vault_id: int) -> OnchainVault:
        ...

    async def call_view(self, fn_name: str, *args: Any) -> Any:
        """
        Call a no-side-effect VaultManager function (nextVaultId, owner, ...).
        """
        ...

    async def close(self) -> None:
        ...
