# HushKey: Vault API - session endpoints
#
# Initialize, unlock and lock the local vault. Backup endpoints need the
# vault unlocked because exports and restores run under the account key.

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from ..backup.backup_history import BackupHistory
from ..config import load_settings
from ..vault.encryption import EncryptionService
from ..vault.local_store import LocalItemStore
from .security import require_session_token, rotate_session_token

router = APIRouter(prefix="/api/vault", tags=["vault"])

_item_store: Optional[LocalItemStore] = None


def get_item_store() -> LocalItemStore:
    """Lazy singleton built from the runtime settings."""
    global _item_store
    if _item_store is None:
        settings = load_settings()
        _item_store = LocalItemStore(
            settings.vault_db_path,
            encryption=EncryptionService(settings.pbkdf2_iterations),
            history=BackupHistory(settings.backup_history_path),
        )
    return _item_store


def set_item_store(store: Optional[LocalItemStore]) -> None:
    """Replace the singleton (tests, CLI `serve`)."""
    global _item_store
    _item_store = store


class InitializeVaultRequest(BaseModel):
    master_password: str = Field(..., min_length=12)


class UnlockVaultRequest(BaseModel):
    master_password: str


class VaultStatusResponse(BaseModel):
    is_unlocked: bool
    vault_exists: bool


@router.get("/status", response_model=VaultStatusResponse)
async def get_vault_status(token: str = Depends(require_session_token)):
    store = get_item_store()
    return VaultStatusResponse(is_unlocked=store.is_unlocked, vault_exists=store.is_initialized)


@router.post("/initialize")
async def initialize_vault(
    request: InitializeVaultRequest,
    token: str = Depends(require_session_token)
):
    """
    Initialize a new vault.

    Password requirements:
    - At least 12 characters
    - Mix of uppercase, lowercase, numbers
    """
    success, message = get_item_store().initialize_vault(request.master_password)
    if not success:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=message)
    return {"success": True, "message": message}


@router.post("/unlock")
async def unlock_vault(
    request: UnlockVaultRequest,
    token: str = Depends(require_session_token)
):
    """Unlock the vault; exports and restores require it."""
    success, message = get_item_store().unlock(request.master_password)
    if not success:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=message)
    return {"success": True, "message": message}


@router.post("/lock")
async def lock_vault(token: str = Depends(require_session_token)):
    """Lock the vault and retire the session token that unlocked it."""
    get_item_store().lock()
    rotate_session_token("vault locked")
    return {"success": True, "message": "Vault locked"}
