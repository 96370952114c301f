# core/services/web3_cache.py

from __future__ import annotations

from time import time
from typing import Dict, Tuple

from web3 import AsyncWeb3
from web3.providers.rpc import AsyncHTTPProvider

_W3_CACHE: Dict[str, Tuple[float, AsyncWeb3]] = {}
_W3_TTL_SEC = 10 * 60  # 10 minutes


def get_async_web3(rpc_url: str) -> AsyncWeb3:
    """
    Cache AsyncWeb3 instances per rpc_url so repeated adapters share one HTTP session.
    """
    url = (rpc_url or "").strip()
    if not url:
        raise ValueError("rpc_url is required")

    now = time()
    hit = _W3_CACHE.get(url)
    if hit and (now - hit[0]) < _W3_TTL_SEC:
        return hit[1]

    w3 = AsyncWeb3(AsyncHTTPProvider(url))
    _W3_CACHE[url] = (now, w3)
    return w3


def drop_async_web3(rpc_url: str) -> None:
    """
    Forget the cached instance so the next reconnect builds a fresh provider.
    """
    _W3_CACHE.pop((rpc_url or "").strip(), None)
