from __future__ import annotations

import logging
from typing import Dict

from core.services.connection_manager import ConnectionManager
from core.services.normalize import NATIVE_DECIMALS, NATIVE_SYMBOL, _norm_lower, is_native_token
from core.services.request_executor import RPC_ENDPOINT, RequestExecutor

logger = logging.getLogger(__name__)

UNKNOWN_SYMBOL = "UNKNOWN"
DEFAULT_DECIMALS = 18


class TokenResolver:
    """
    Resolves display symbol/decimals for vault tokens.

    The zero address is the native asset. ERC-20 lookups go through the
    request executor; failures fall back to UNKNOWN / 18 and are not cached.
    """

    def __init__(self, connection: ConnectionManager, executor: RequestExecutor) -> None:
        self._connection = connection
        self._executor = executor
        self._symbols: Dict[str, str] = {}
        self._decimals: Dict[str, int] = {}

    async def symbol(self, token: str) -> str:
        if is_native_token(token):
            return NATIVE_SYMBOL
        key = _norm_lower(token)
        if key in self._symbols:
            return self._symbols[key]
        try:
            gateway = self._connection.gateway
            value = await self._executor.execute(RPC_ENDPOINT, lambda: gateway.token_symbol(token))
        except Exception as exc:
            logger.error("Failed to get token symbol for %s: %s", token, exc)
            return UNKNOWN_SYMBOL
        self._symbols[key] = str(value)
        return self._symbols[key]

    async def decimals(self, token: str) -> int:
        if is_native_token(token):
            return NATIVE_DECIMALS
        key = _norm_lower(token)
        if key in self._decimals:
            return self._decimals[key]
        try:
            gateway = self._connection.gateway
            value = await self._executor.execute(RPC_ENDPOINT, lambda: gateway.token_decimals(token))
        except Exception as exc:
            logger.error("Failed to get token decimals for %s: %s", token, exc)
            return DEFAULT_DECIMALS
        self._decimals[key] = int(value)
        return self._decimals[key]
