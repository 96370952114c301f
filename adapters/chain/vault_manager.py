# adapters/chain/vault_manager.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from eth_utils import keccak
from hexbytes import HexBytes
from web3 import AsyncWeb3, Web3
from web3.contract import AsyncContract

from core.domain.enums.vault_enums import VaultManagerEvent
from core.domain.errors import DecodingError
from core.domain.schemas.onchain_types import ChainEvent, OnchainVault
from core.services.web3_cache import drop_async_web3, get_async_web3

logger = logging.getLogger(__name__)


def _event(name: str, inputs: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {"anonymous": False, "name": name, "type": "event", "inputs": inputs}


def _arg(name: str, typ: str, indexed: bool = False) -> Dict[str, Any]:
    return {"indexed": indexed, "internalType": typ, "name": name, "type": typ}


def _view(name: str, inputs: List[Dict[str, Any]], outputs: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {"name": name, "inputs": inputs, "outputs": outputs, "stateMutability": "view", "type": "function"}


ABI_VAULT_MANAGER = [
    # events
    _event(
        "VaultCreated",
        [
            _arg("vaultId", "uint256", True),
            _arg("user", "address", True),
            _arg("token", "address", True),
            _arg("unlockTime", "uint256"),
        ],
    ),
    _event(
        "Deposited",
        [
            _arg("vaultId", "uint256", True),
            _arg("user", "address", True),
            _arg("token", "address", True),
            _arg("amount", "uint256"),
        ],
    ),
    _event(
        "Withdrawn",
        [
            _arg("vaultId", "uint256", True),
            _arg("user", "address", True),
            _arg("token", "address", True),
            _arg("amount", "uint256"),
            _arg("platformFee", "uint256"),
        ],
    ),
    _event("PlatformFeeUpdated", [_arg("oldFeeRate", "uint256"), _arg("newFeeRate", "uint256")]),
    _event("FeeRecipientUpdated", [_arg("oldRecipient", "address"), _arg("newRecipient", "address")]),
    # views
    _view(
        "vaults",
        [_arg("", "uint256")],
        [
            _arg("user", "address"),
            _arg("token", "address"),
            _arg("balance", "uint256"),
            _arg("unlockTime", "uint256"),
            _arg("exists", "bool"),
        ],
    ),
    _view("nextVaultId", [], [_arg("", "uint256")]),
    _view("platformFeeRate", [], [_arg("", "uint256")]),
    _view("feeRecipient", [], [_arg("", "address")]),
    _view("owner", [], [_arg("", "address")]),
    _view("supportsETH", [], [_arg("", "bool")]),
]

ABI_ERC20_META = [
    _view("symbol", [], [_arg("", "string")]),
    _view("decimals", [], [_arg("", "uint8")]),
]

EVENT_SIGNATURES = {
    VaultManagerEvent.VAULT_CREATED: "VaultCreated(uint256,address,address,uint256)",
    VaultManagerEvent.DEPOSITED: "Deposited(uint256,address,address,uint256)",
    VaultManagerEvent.WITHDRAWN: "Withdrawn(uint256,address,address,uint256,uint256)",
    VaultManagerEvent.PLATFORM_FEE_UPDATED: "PlatformFeeUpdated(uint256,uint256)",
    VaultManagerEvent.FEE_RECIPIENT_UPDATED: "FeeRecipientUpdated(address,address)",
}

EVENT_TOPICS = {name: "0x" + keccak(text=sig).hex() for name, sig in EVENT_SIGNATURES.items()}


def _hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return Web3.to_hex(HexBytes(value))
    return str(value or "")


class VaultManagerAdapter:
    """
    Read-only wrapper for the on-chain VaultManager.

    One public coroutine == one RPC round trip, so the pipeline can pace each
    call through the request executor.
    """

    def __init__(self, w3: AsyncWeb3, address: str, rpc_url: Optional[str] = None):
        if not address:
            raise RuntimeError("VaultManagerAdapter: address not configured")
        self.w3: AsyncWeb3 = w3
        self.rpc_url = rpc_url
        self.address = Web3.to_checksum_address(address)
        self.contract: AsyncContract = w3.eth.contract(
            address=self.address,
            abi=ABI_VAULT_MANAGER,
        )

    @classmethod
    def from_rpc(cls, rpc_url: str, address: str) -> "VaultManagerAdapter":
        return cls(get_async_web3(rpc_url), address, rpc_url=rpc_url)

    @staticmethod
    def topic(event_name: str) -> str:
        try:
            return EVENT_TOPICS[VaultManagerEvent(event_name)]
        except ValueError as exc:
            raise ValueError(f"Unknown VaultManager event: {event_name}") from exc

    # ------------------------------------------------------------------ #
    # Node
    # ------------------------------------------------------------------ #

    async def get_chain_id(self) -> int:
        return int(await self.w3.eth.chain_id)

    async def get_block_number(self) -> int:
        return int(await self.w3.eth.block_number)

    async def get_code(self) -> bytes:
        return bytes(await self.w3.eth.get_code(self.address))

    # ------------------------------------------------------------------ #
    # Logs
    # ------------------------------------------------------------------ #

    async def get_logs(self, event_name: str, from_block: int, to_block: int) -> List[Dict[str, Any]]:
        logs = await self.w3.eth.get_logs(
            {
                "address": self.address,
                "topics": [self.topic(event_name)],
                "fromBlock": int(from_block),
                "toBlock": int(to_block),
            }
        )
        return list(logs)

    async def create_filter(self, event_name: str) -> str:
        flt = await self.w3.eth.filter({"address": self.address, "topics": [self.topic(event_name)]})
        return str(flt.filter_id)

    async def get_filter_changes(self, filter_id: str) -> List[Dict[str, Any]]:
        return list(await self.w3.eth.get_filter_changes(filter_id))

    def decode(self, event_name: str, raw_log: Dict[str, Any]) -> ChainEvent:
        try:
            decoded = getattr(self.contract.events, event_name)().process_log(raw_log)
            return ChainEvent(
                name=str(decoded["event"]),
                args=dict(decoded["args"]),
                block_number=int(decoded["blockNumber"]),
                transaction_hash=_hex(decoded["transactionHash"]).lower(),
                transaction_index=int(decoded.get("transactionIndex") or 0),
                log_index=int(decoded.get("logIndex") or 0),
            )
        except Exception as exc:
            raise DecodingError(f"Failed to decode {event_name} log: {exc}") from exc

    # ------------------------------------------------------------------ #
    # Views
    # ------------------------------------------------------------------ #

    async def token_symbol(self, token: str) -> str:
        c = self.w3.eth.contract(address=Web3.to_checksum_address(token), abi=ABI_ERC20_META)
        return str(await c.functions.symbol().call())

    async def token_decimals(self, token: str) -> int:
        c = self.w3.eth.contract(address=Web3.to_checksum_address(token), abi=ABI_ERC20_META)
        return int(await c.functions.decimals().call())

    async def get_vault(self, vault_id: int) -> OnchainVault:
        user, token, balance, unlock_time, exists = await self.contract.functions.vaults(int(vault_id)).call()
        return OnchainVault(
            vault_id=str(int(vault_id)),
            user=str(user),
            token=str(token),
            balance_raw=int(balance),
            unlock_time=int(unlock_time),
            exists=bool(exists),
        )

    async def call_view(self, fn_name: str, *args: Any) -> Any:
        return await getattr(self.contract.functions, fn_name)(*args).call()

    async def close(self) -> None:
        if self.rpc_url:
            drop_async_web3(self.rpc_url)
        disconnect = getattr(self.w3.provider, "disconnect", None)
        if disconnect is not None:
            try:
                await disconnect()
            except Exception as exc:
                logger.debug("Provider disconnect failed: %s", exc)
