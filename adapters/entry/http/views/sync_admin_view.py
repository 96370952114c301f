from __future__ import annotations

import hmac

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.security import APIKeyHeader

from adapters.entry.http.dtos.sync_dtos import (
    ContractInfoOut,
    ReinitializeOut,
    SyncStatusOut,
    VaultResyncOut,
)
from config import get_settings
from core.domain.errors import ConnectionNotReadyError, RateLimitError, VaultNotFoundError
from core.use_cases.vault_sync_pipeline_usecase import VaultSyncPipeline

router = APIRouter(tags=["vault-sync"])

admin_key_header = APIKeyHeader(name="X-Admin-Key", auto_error=False)


def get_pipeline(request: Request) -> VaultSyncPipeline:
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise HTTPException(status_code=503, detail="Sync pipeline is not running.")
    return pipeline


def require_admin_key(key: str = Depends(admin_key_header)) -> None:
    expected = get_settings().ADMIN_API_KEY
    if not expected:
        raise HTTPException(status_code=403, detail="Admin endpoints are disabled (ADMIN_API_KEY not set).")
    if not key:
        raise HTTPException(status_code=401, detail="Missing X-Admin-Key header.")
    if not hmac.compare_digest(key, expected):
        raise HTTPException(status_code=403, detail="Invalid admin key.")


@router.get("/sync/status", response_model=SyncStatusOut)
async def sync_status(pipeline: VaultSyncPipeline = Depends(get_pipeline)):
    """
    Connection state, checkpoint, skipped ranges and request pacing state.
    """
    return SyncStatusOut.model_validate(pipeline.status())


@router.post("/sync/reinitialize", response_model=ReinitializeOut, dependencies=[Depends(require_admin_key)])
async def sync_reinitialize(pipeline: VaultSyncPipeline = Depends(get_pipeline)):
    if not pipeline.enabled:
        raise HTTPException(status_code=409, detail="Blockchain service is disabled by configuration.")
    try:
        ok = await pipeline.reinitialize()
    except Exception as exc:
        raise HTTPException(status_code=500, detail=f"Failed to reinitialize: {exc}") from exc
    return ReinitializeOut(ok=ok, connection=pipeline.connection.status())


@router.get("/contract/info", response_model=ContractInfoOut)
async def contract_info(pipeline: VaultSyncPipeline = Depends(get_pipeline)):
    try:
        info = await pipeline.resync.contract_info()
    except ConnectionNotReadyError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except RateLimitError as exc:
        raise HTTPException(status_code=503, detail=f"Node is rate limiting: {exc}") from exc
    except Exception as exc:
        raise HTTPException(status_code=500, detail=f"Failed to read contract info: {exc}") from exc
    return ContractInfoOut.model_validate(info.model_dump())


@router.post(
    "/vaults/{vault_id}/resync",
    response_model=VaultResyncOut,
    dependencies=[Depends(require_admin_key)],
)
async def resync_vault(vault_id: str, pipeline: VaultSyncPipeline = Depends(get_pipeline)):
    """
    Overwrite the stored vault balance/symbol with the on-chain values.
    """
    if not vault_id.isdigit():
        raise HTTPException(status_code=400, detail="vault_id must be a non-negative integer")
    try:
        vault = await pipeline.resync.resync_vault(vault_id)
    except VaultNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ConnectionNotReadyError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except RateLimitError as exc:
        raise HTTPException(status_code=503, detail=f"Node is rate limiting: {exc}") from exc
    except Exception as exc:
        raise HTTPException(status_code=500, detail=f"Failed to resync vault: {exc}") from exc

    return VaultResyncOut(
        vault_id=vault.vault_id,
        user_address=vault.user_address,
        token_address=vault.token_address,
        token_symbol=vault.token_symbol,
        balance=vault.balance,
        status=str(vault.status),
        unlock_time=vault.unlock_time,
        deposits=len(vault.deposits),
        withdrawals=len(vault.withdrawals),
    )
