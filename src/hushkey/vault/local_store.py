# HushKey: Vault - Local Item Store
#
# SQLite-backed store for vaults, categories and items. Implements the
# ItemStore and SessionProvider contracts used by the backup engine.
#
# Every entity row holds AES-256-GCM encrypted JSON under the account key.
# The master password is checked against an encrypted canary; it is never
# stored, only the PBKDF2 salt and iteration count are.

import json
import sqlite3
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from cryptography.exceptions import InvalidTag

from ..backup.backup_history import BackupHistory
from ..backup.interfaces import ItemStore, SessionProvider
from ..core import EventSeverity, EventType, get_audit_logger
from ..config import DEFAULT_PBKDF2_ITERATIONS
from ..core.db import transaction
from .encryption import EncryptionService, verify_master_password
from .models import Category, Item, Vault, utc_now_iso


class LocalItemStore(ItemStore, SessionProvider):
    """
    Encrypted local vault database.

    Security:
    - Each entity encrypted with AES-256-GCM under the account key
    - Master password verified via encrypted canary (HUSHKEY_VAULT_OK)
    - Failed unlocks back off exponentially (1s, 2s, 4s ... 16s)
    - Audit logging for vault lifecycle events

    Args:
        vault_path: Path to the vault database (default: data/vault.db)
        encryption: Encryption service (tests pass a low iteration count)
        history: Backup history store (default: backup_history.db next to
            the vault database)
    """

    CANARY_PLAINTEXT = "HUSHKEY_VAULT_OK"
    SCHEMA_VERSION = "2.0"

    def __init__(
        self,
        vault_path: Optional[Path] = None,
        encryption: Optional[EncryptionService] = None,
        history: Optional[BackupHistory] = None,
    ):
        self.vault_path = Path(vault_path) if vault_path else Path("data/vault.db")
        self.encryption = encryption or EncryptionService()
        self.history = history or BackupHistory(self.vault_path.parent / "backup_history.db")

        self.account_key: Optional[bytes] = None
        self.failed_attempts = 0
        self.lockout_until: Optional[datetime] = None

    @property
    def is_initialized(self) -> bool:
        return self.vault_path.exists() and self.vault_path.stat().st_size > 0

    @property
    def is_unlocked(self) -> bool:
        return self.account_key is not None

    def _audit(self, event_type: EventType, severity: EventSeverity, message: str, **details):
        get_audit_logger().log_event(event_type, severity, message, details=details or None)

    # ── Lifecycle ────────────────────────────────────────────────────

    def initialize_vault(self, master_password: str) -> Tuple[bool, str]:
        """
        Create the vault database protected by `master_password`.

        Returns:
            (success, message)
        """
        is_valid, error_msg = verify_master_password(master_password)
        if not is_valid:
            return False, error_msg

        if self.is_initialized:
            return False, "Vault already exists. Use unlock() instead."

        salt = self.encryption.generate_salt()
        key = self.encryption.derive_key(master_password, salt)
        canary = self.encryption.encrypt(self.CANARY_PLAINTEXT, key)

        with transaction(self.vault_path) as conn:
            conn.execute("""
                CREATE TABLE vault_config (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE vaults (
                    id TEXT PRIMARY KEY,
                    encrypted TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE categories (
                    id TEXT PRIMARY KEY,
                    encrypted TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE items (
                    id TEXT PRIMARY KEY,
                    vault_id TEXT NOT NULL REFERENCES vaults(id),
                    encrypted TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)
            conn.executemany(
                "INSERT INTO vault_config (key, value) VALUES (?, ?)",
                [
                    ("salt", salt),
                    ("verify_canary", canary),
                    ("created_at", utc_now_iso()),
                    ("version", self.SCHEMA_VERSION),
                    ("kdf_iterations", str(self.encryption.iterations)),
                ],
            )

        self._audit(EventType.VAULT_CREATED, EventSeverity.INFO,
                    "Vault initialized with master password")
        return True, "Vault created successfully!"

    def unlock(self, master_password: str) -> Tuple[bool, str]:
        """
        Unlock with the master password.

        Returns:
            (success, message)
        """
        if self.lockout_until and datetime.now() < self.lockout_until:
            remaining = (self.lockout_until - datetime.now()).seconds + 1
            self._audit(EventType.VAULT_UNLOCK_FAILED, EventSeverity.ALERT,
                        f"Unlock attempt during lockout period ({remaining}s remaining)")
            return False, f"Too many failed attempts. Please wait {remaining} seconds."

        if not self.is_initialized:
            return False, "Vault does not exist. Initialize vault first."

        config = self._config()
        salt = config.get("salt")
        canary = config.get("verify_canary")
        if not salt or not canary:
            return False, "Corrupted vault: missing salt or canary"

        # the count the vault was created with, not the current setting
        iterations = int(config.get("kdf_iterations") or DEFAULT_PBKDF2_ITERATIONS)
        candidate_key = self.encryption.derive_key(master_password, salt, iterations=iterations)
        try:
            if self.encryption.decrypt(canary, candidate_key) != self.CANARY_PLAINTEXT:
                raise ValueError("Canary mismatch")
        except (InvalidTag, ValueError):
            return self._handle_failed_unlock()

        self.account_key = candidate_key
        self.failed_attempts = 0
        self.lockout_until = None
        self._audit(EventType.VAULT_UNLOCKED, EventSeverity.INFO, "Vault unlocked successfully")
        return True, "Vault unlocked successfully!"

    def _handle_failed_unlock(self) -> Tuple[bool, str]:
        self.failed_attempts += 1
        delay_seconds = min(2 ** (self.failed_attempts - 1), 16)
        self.lockout_until = datetime.now() + timedelta(seconds=delay_seconds)

        self._audit(
            EventType.VAULT_UNLOCK_FAILED,
            EventSeverity.ALERT,
            f"Vault unlock failed: incorrect password (attempt {self.failed_attempts}, "
            f"{delay_seconds}s lockout)",
        )
        if self.failed_attempts == 1:
            return False, "Incorrect master password"
        return False, (
            f"Incorrect master password. Please wait {delay_seconds} seconds "
            "before trying again."
        )

    def lock(self):
        self.account_key = None
        self._audit(EventType.VAULT_LOCKED, EventSeverity.INFO, "Vault locked")

    def get_account_key(self) -> Optional[bytes]:
        return self.account_key

    def _config(self) -> Dict[str, str]:
        with transaction(self.vault_path) as conn:
            rows = conn.execute("SELECT key, value FROM vault_config").fetchall()
        return dict(rows)

    # ── Reads ────────────────────────────────────────────────────────

    def _load(self, table: str, key: bytes, order_by: str = "rowid") -> List[Dict[str, Any]]:
        with transaction(self.vault_path) as conn:
            rows = conn.execute(f"SELECT encrypted FROM {table} ORDER BY {order_by}").fetchall()
        return [self.encryption.decrypt_object(row[0], key) for row in rows]

    def get_vaults(self, key: bytes) -> List[Vault]:
        vaults = [Vault.from_dict(d) for d in self._load("vaults", key)]
        counts = self._item_counts()
        for vault in vaults:
            vault.item_count = counts.get(vault.id, 0)
        return vaults

    def get_categories(self, key: bytes) -> List[Category]:
        return [Category.from_dict(d) for d in self._load("categories", key)]

    def get_items(self, key: bytes) -> List[Item]:
        return [Item.from_dict(d) for d in self._load("items", key)]

    def get_settings(self) -> Optional[Dict[str, Any]]:
        raw = self._config().get("settings")
        return json.loads(raw) if raw else None

    def set_settings(self, settings: Dict[str, Any]) -> None:
        with transaction(self.vault_path) as conn:
            conn.execute(
                "INSERT OR REPLACE INTO vault_config (key, value) VALUES ('settings', ?)",
                (json.dumps(settings),),
            )

    def _item_counts(self) -> Dict[str, int]:
        with transaction(self.vault_path) as conn:
            rows = conn.execute(
                "SELECT vault_id, COUNT(*) FROM items GROUP BY vault_id"
            ).fetchall()
        return dict(rows)

    # ── Writes ───────────────────────────────────────────────────────

    def create_vault(self, vault: Vault, key: bytes) -> Vault:
        encrypted = self.encryption.encrypt_object(vault.to_dict(), key)
        try:
            with transaction(self.vault_path) as conn:
                conn.execute(
                    "INSERT INTO vaults (id, encrypted, created_at) VALUES (?, ?, ?)",
                    (vault.id, encrypted, vault.created_at),
                )
        except sqlite3.IntegrityError:
            raise ValueError(f"Vault already exists: {vault.id}")
        return vault

    def create_category(self, category: Category, key: bytes) -> Category:
        encrypted = self.encryption.encrypt_object(category.to_dict(), key)
        try:
            with transaction(self.vault_path) as conn:
                conn.execute(
                    "INSERT INTO categories (id, encrypted) VALUES (?, ?)",
                    (category.id, encrypted),
                )
        except sqlite3.IntegrityError:
            raise ValueError(f"Category already exists: {category.id}")
        return category

    def create_item(self, item: Item, key: bytes) -> Item:
        """Insert an item. Its vault must already exist."""
        encrypted = self.encryption.encrypt_object(item.to_dict(), key)
        with transaction(self.vault_path) as conn:
            exists = conn.execute(
                "SELECT 1 FROM vaults WHERE id = ?", (item.vault_id,)
            ).fetchone()
            if not exists:
                raise ValueError(f"Unknown vault: {item.vault_id}")
            try:
                conn.execute(
                    "INSERT INTO items (id, vault_id, encrypted, created_at) VALUES (?, ?, ?, ?)",
                    (item.id, item.vault_id, encrypted, item.created_at),
                )
            except sqlite3.IntegrityError:
                raise ValueError(f"Item already exists: {item.id}")
        return item

    # ── Backup metadata ──────────────────────────────────────────────

    def record_backup(self, backup_type: str, item_count: int, byte_size: int) -> None:
        self.history.record_backup(backup_type, item_count, byte_size)

    def get_last_backup_at(self) -> Optional[str]:
        return self.history.get_last_backup_at()

    def backup_stats(self) -> Dict[str, int]:
        latest = self.history.list_backups(limit=1)
        return {
            "total_backups": self.history.count(),
            "last_item_count": latest[0]["item_count"] if latest else 0,
        }
