# HushKey: Command-line entry point
#
#   hushkey init                      create the local vault
#   hushkey export --format hkb ...   write a backup file
#   hushkey restore FILE ...          restore an HKB container or portable export
#   hushkey validate FILE --pin ...   check integrity + PIN only
#   hushkey inspect FILE              classify a backup file
#   hushkey serve                     run the local HTTP API
#
# The master password comes from --master-password or HUSHKEY_MASTER_PASSWORD.

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from . import __version__
from .backup.backup_history import BackupHistory
from .backup.backup_manager import BackupFormat, BackupManager, BackupOptions
from .backup.container import HKBContainer
from .backup.errors import BackupError, ParseError
from .backup.progress import BackupProgress
from .config import Settings, load_settings
from .core import AuditLogger, set_audit_logger
from .vault.encryption import EncryptionService
from .vault.local_store import LocalItemStore

logger = logging.getLogger("hushkey")


class CLIError(Exception):
    """User-facing failure; printed and mapped to exit status 1."""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hushkey",
        description="HushKey - encrypted vault backup and restore",
    )
    parser.add_argument("--version", action="version", version=f"HushKey v{__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument(
        "--master-password",
        default=None,
        help="Vault master password (default: $HUSHKEY_MASTER_PASSWORD)",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init", help="Create the local vault")

    export = sub.add_parser("export", help="Export a backup")
    export.add_argument(
        "--format",
        required=True,
        choices=[f.value for f in BackupFormat],
        help="Backup format",
    )
    export.add_argument("--out", required=True, type=Path, help="Output file")
    export.add_argument("--password", help="Archive password (zip format)")
    export.add_argument("--pin", help="Backup PIN (hkb format)")
    export.add_argument(
        "--include-attachments",
        action="store_true",
        help="Add attachment files to raw_csv archives",
    )

    restore = sub.add_parser("restore", help="Restore a backup into the vault")
    restore.add_argument("file", type=Path)
    restore.add_argument("--pin", help="Backup PIN (hkb containers)")
    restore.add_argument("--password", help="Archive password (encrypted zip)")
    restore.add_argument(
        "--use-account-key",
        action="store_true",
        help="Decrypt legacy 1.0 containers with the vault's account key",
    )

    validate = sub.add_parser("validate", help="Check container integrity and PIN")
    validate.add_argument("file", type=Path)
    validate.add_argument("--pin", required=True)

    inspect = sub.add_parser("inspect", help="Describe a backup file")
    inspect.add_argument("file", type=Path)

    serve = sub.add_parser("serve", help="Run the local HTTP API")
    serve.add_argument("--host", default=None, help="Bind host (default: $HUSHKEY_API_HOST)")
    serve.add_argument("--port", type=int, default=None, help="Bind port (default: $HUSHKEY_API_PORT)")

    return parser


def _open_store(settings: Settings) -> LocalItemStore:
    return LocalItemStore(
        settings.vault_db_path,
        encryption=EncryptionService(settings.pbkdf2_iterations),
        history=BackupHistory(settings.backup_history_path),
    )


def _master_password(args) -> str:
    password = args.master_password or os.environ.get("HUSHKEY_MASTER_PASSWORD")
    if not password:
        raise CLIError("Master password required (--master-password or HUSHKEY_MASTER_PASSWORD)")
    return password


def _unlocked_manager(args, settings: Settings) -> BackupManager:
    store = _open_store(settings)
    success, message = store.unlock(_master_password(args))
    if not success:
        raise CLIError(message)
    return BackupManager(
        crypto=store.encryption,
        store=store,
        session=store,
        backup_frequency_days=settings.backup_frequency_days,
    )


def _read(path: Path) -> bytes:
    try:
        return path.read_bytes()
    except OSError as e:
        raise CLIError(f"Cannot read {path}: {e.strerror}")


def _print_progress(event: BackupProgress):
    suffix = f" ({event.current_item})" if event.current_item else ""
    print(f"  [{event.progress:3d}%] {event.stage.value}{suffix}")


# ── Commands ─────────────────────────────────────────────────────────


def cmd_init(args, settings: Settings) -> int:
    success, message = _open_store(settings).initialize_vault(_master_password(args))
    if not success:
        raise CLIError(message)
    print(message)
    return 0


def cmd_export(args, settings: Settings) -> int:
    mgr = _unlocked_manager(args, settings)
    options = BackupOptions(
        format=BackupFormat(args.format),
        password=args.password,
        pin=args.pin,
        include_attachments=args.include_attachments,
    )
    try:
        artifact = mgr.create_backup_artifact(options, on_progress=_print_progress)
    except ValueError as e:
        raise CLIError(str(e))
    args.out.parent.mkdir(parents=True, exist_ok=True)
    args.out.write_bytes(artifact.content)
    print(f"Wrote {artifact.size_bytes} bytes ({artifact.item_count} items) to {args.out}")
    return 0


def cmd_restore(args, settings: Settings) -> int:
    mgr = _unlocked_manager(args, settings)
    content = _read(args.file)

    if content.lstrip().startswith(b"{"):
        if not args.pin:
            raise CLIError("--pin is required for HKB containers")
        account_key = mgr.session.get_account_key() if args.use_account_key else None
        result = mgr.restore_from_container(content, args.pin, account_key=account_key)
    else:
        bundle = mgr.parse_portable_archive(content, args.password)
        if bundle is None:
            raise CLIError(str(mgr.last_parse_failure or "Unreadable backup"))
        for error in mgr.last_parse_errors:
            print(f"  skipped: {error}")
        result = mgr.restore_bundle(bundle)

    if not result.success:
        raise CLIError("; ".join(result.errors))

    print(
        f"Restored {result.vaults_restored} vaults, "
        f"{result.categories_restored} categories, {result.items_restored} items"
    )
    for error in result.errors:
        print(f"  {error}")
    return 0


def cmd_validate(args, settings: Settings) -> int:
    store = _open_store(settings)
    mgr = BackupManager(crypto=store.encryption, store=store, session=store)
    if mgr.validate_container(_read(args.file), args.pin):
        print("Backup is valid")
        return 0
    print("Backup is invalid or the PIN is wrong")
    return 1


def cmd_inspect(args, settings: Settings) -> int:
    content = _read(args.file)
    store = _open_store(settings)
    mgr = BackupManager(crypto=store.encryption, store=store, session=store)

    if mgr.is_password_protected_archive(content):
        print("Password-protected ZIP archive")
        return 0
    try:
        container = HKBContainer.from_json(content)
    except ParseError:
        if content[:2] == b"PK":
            print("Plain ZIP archive")
        else:
            print("CSV export")
        return 0

    intact = mgr.container.validate(container)
    print(f"HKB container version {container.version}, created {container.timestamp}")
    print(f"  integrity: {'ok' if intact else 'FAILED'}")
    return 0 if intact else 1


def cmd_serve(args, settings: Settings) -> int:
    from .api.main import start_api_server
    from .api.vault_routes import set_item_store

    set_item_store(_open_store(settings))
    host = args.host or settings.api_host
    port = args.port or settings.api_port
    print(f"Starting HushKey API on {host}:{port} (Ctrl+C to stop)")
    try:
        start_api_server(host=host, port=port)
    except KeyboardInterrupt:
        print("\nShutting down...")
    return 0


COMMANDS = {
    "init": cmd_init,
    "export": cmd_export,
    "restore": cmd_restore,
    "validate": cmd_validate,
    "inspect": cmd_inspect,
    "serve": cmd_serve,
}


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        settings = load_settings()
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    set_audit_logger(AuditLogger(settings.audit_log_dir))

    try:
        return COMMANDS[args.command](args, settings)
    except (CLIError, BackupError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
