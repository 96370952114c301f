from __future__ import annotations

from typing import Optional


class VaultSyncError(Exception):
    """
    Base class for every error raised by the vault event sync pipeline.
    """


class TransientProviderError(VaultSyncError):
    """
    Network blip or timeout talking to the node. Retried by the reconnect policy.
    """


class NonTransientConnectionError(VaultSyncError):
    """
    Connection failure that will not heal by retrying (e.g. the RPC host does not resolve).
    """


class RateLimitError(VaultSyncError):
    """
    Provider kept rate-limiting after the executor ran out of retries.
    """

    def __init__(self, message: str, *, endpoint: str = "", retry_after_ms: Optional[int] = None) -> None:
        super().__init__(message)
        self.endpoint = endpoint
        self.retry_after_ms = retry_after_ms


class ContractAbsentError(VaultSyncError):
    """
    No byte-code at the configured contract address.
    """


class ConnectionNotReadyError(VaultSyncError):
    pass


class DecodingError(VaultSyncError):
    """
    A raw log could not be decoded against the contract ABI.
    """


class VaultNotFoundError(VaultSyncError):
    def __init__(self, vault_id: str) -> None:
        super().__init__(f"Vault {vault_id} not found")
        self.vault_id = vault_id
