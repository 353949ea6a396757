"""Backup API routes: export, restore, validate, inspect, history and health.

Backup payloads travel base64-encoded inside JSON bodies.
"""

import base64
import binascii
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from ..backup.backup_manager import BackupFormat, BackupManager, BackupOptions
from ..backup.errors import (
    AuthenticationError,
    BackupError,
    IntegrityError,
    MissingKeyError,
    ParseError,
    UnsupportedVersionError,
)
from ..config import load_settings
from .security import require_session_token
from .vault_routes import get_item_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/backups", tags=["backups"])

# ── Singleton ────────────────────────────────────────────────────────

_backup_manager: Optional[BackupManager] = None


def get_backup_manager() -> BackupManager:
    """Lazy singleton wired to the vault store singleton."""
    global _backup_manager
    if _backup_manager is None:
        store = get_item_store()
        _backup_manager = BackupManager(
            crypto=store.encryption,
            store=store,
            session=store,
            backup_frequency_days=load_settings().backup_frequency_days,
        )
    return _backup_manager


_STATUS_BY_ERROR = (
    (IntegrityError, status.HTTP_400_BAD_REQUEST),
    (ParseError, status.HTTP_400_BAD_REQUEST),
    (UnsupportedVersionError, status.HTTP_400_BAD_REQUEST),
    (AuthenticationError, status.HTTP_403_FORBIDDEN),
    (MissingKeyError, status.HTTP_423_LOCKED),
)


def _http_error(exc: BackupError) -> HTTPException:
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=code, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def _decode_content(content_b64: str) -> bytes:
    try:
        return base64.b64decode(content_b64, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=400, detail="content_b64 is not valid base64")


# ── Pydantic Models ──────────────────────────────────────────────────


class ExportRequest(BaseModel):
    format: BackupFormat
    password: Optional[str] = None
    pin: Optional[str] = Field(None, min_length=4)
    include_attachments: bool = False


class RestoreRequest(BaseModel):
    content_b64: str
    pin: str
    use_account_key: bool = False


class ImportRequest(BaseModel):
    content_b64: str
    password: Optional[str] = None


class ValidateRequest(BaseModel):
    content_b64: str
    pin: str


class InspectRequest(BaseModel):
    content_b64: str


# ── Routes ───────────────────────────────────────────────────────────


@router.post("/export")
async def export_backup(
    body: ExportRequest,
    _token: str = Depends(require_session_token),
):
    """Create a backup in the requested format."""
    mgr = get_backup_manager()
    options = BackupOptions(
        format=body.format,
        password=body.password,
        pin=body.pin,
        include_attachments=body.include_attachments,
    )
    try:
        artifact = mgr.create_backup_artifact(options)
    except BackupError as e:
        raise _http_error(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {
        "content_b64": base64.b64encode(artifact.content).decode("ascii"),
        "size_bytes": artifact.size_bytes,
        "format": artifact.format.value,
        "file_name": artifact.file_name,
        "media_type": artifact.format.media_type,
        "item_count": artifact.item_count,
    }


@router.post("/restore")
async def restore_backup(
    body: RestoreRequest,
    _token: str = Depends(require_session_token),
):
    """Restore an HKB container into the unlocked vault.

    `use_account_key` supplies the session's account key for legacy
    (version 1.0) containers.
    """
    mgr = get_backup_manager()
    content = _decode_content(body.content_b64)
    account_key = mgr.session.get_account_key() if body.use_account_key else None
    result = mgr.restore_from_container(content, body.pin, account_key=account_key)
    if result.failure is not None:
        raise _http_error(result.failure)
    return result.to_dict()


@router.post("/import")
async def import_backup(
    body: ImportRequest,
    _token: str = Depends(require_session_token),
):
    """Import a CSV / ZIP / raw export into the unlocked vault."""
    mgr = get_backup_manager()
    bundle = mgr.parse_portable_archive(_decode_content(body.content_b64), body.password)
    if bundle is None:
        raise _http_error(mgr.last_parse_failure or ParseError("unreadable backup"))
    result = mgr.restore_bundle(bundle)
    if result.failure is not None:
        raise _http_error(result.failure)
    payload = result.to_dict()
    payload["skipped_files"] = [str(e) for e in mgr.last_parse_errors]
    return payload


@router.post("/validate")
async def validate_backup(
    body: ValidateRequest,
    _token: str = Depends(require_session_token),
):
    """Check container integrity and PIN without restoring anything."""
    mgr = get_backup_manager()
    return {"valid": mgr.validate_container(_decode_content(body.content_b64), body.pin)}


@router.post("/inspect")
async def inspect_backup(
    body: InspectRequest,
    _token: str = Depends(require_session_token),
):
    """Classify an uploaded backup without opening it."""
    mgr = get_backup_manager()
    content = _decode_content(body.content_b64)
    return {
        "password_protected": mgr.is_password_protected_archive(content),
        "is_container": mgr.container.validate(content),
    }


@router.get("/history")
async def backup_history(
    limit: int = 50,
    _token: str = Depends(require_session_token),
):
    """List recorded backups, newest first."""
    store = get_item_store()
    backups = store.history.list_backups(limit=limit)
    return {"backups": backups, "total": store.history.count()}


@router.get("/health")
async def backup_health(
    _token: str = Depends(require_session_token),
):
    """Backup freshness report."""
    return get_backup_manager().get_backup_health().to_dict()
