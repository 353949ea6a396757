# HushKey: Backup Module - Collaborator Contracts
#
# The backup engine never reaches for global services. The orchestrator is
# handed three capability objects:
#
#   CryptoProvider  - symmetric encryption, key derivation, digests
#   ItemStore       - reads/writes vaults, items, categories, settings and
#                     backup metadata
#   SessionProvider - the caller's unlocked account key (or None)
#
# `hushkey.vault.encryption.EncryptionService` and
# `hushkey.vault.local_store.LocalItemStore` are the shipped implementations;
# tests substitute deterministic fakes.

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from ..vault.encryption import EncryptionService
from ..vault.models import Category, Item, Vault


class CryptoProvider(ABC):
    """Symmetric crypto primitives with a fixed contract."""

    @abstractmethod
    def encrypt(self, plaintext: str, key: bytes) -> str:
        """Encrypt text under a raw key; returns an opaque string."""

    @abstractmethod
    def decrypt(self, encrypted: str, key: bytes) -> str:
        """Inverse of encrypt(). Raises on wrong key or tampering."""

    @abstractmethod
    def encrypt_object(self, value: Any, key: bytes) -> str:
        """JSON-serialize and encrypt."""

    @abstractmethod
    def decrypt_object(self, encrypted: str, key: bytes) -> Any:
        """Inverse of encrypt_object()."""

    @abstractmethod
    def encrypt_binary(self, data: bytes, key: bytes) -> bytes:
        """Encrypt raw bytes."""

    @abstractmethod
    def decrypt_binary(self, blob: bytes, key: bytes) -> bytes:
        """Inverse of encrypt_binary()."""

    @abstractmethod
    def derive_key(self, password: str, salt: str, iterations: Optional[int] = None) -> bytes:
        """Derive a raw key from a password/PIN and a salt string.

        `iterations` overrides the provider's own PBKDF2 count.
        """

    @abstractmethod
    def generate_key(self) -> bytes:
        """Fresh random symmetric key."""

    @abstractmethod
    def generate_salt(self) -> str:
        """Fresh random salt string."""

    @abstractmethod
    def digest(self, data: bytes) -> str:
        """Hex digest of `data`."""


CryptoProvider.register(EncryptionService)


class ItemStore(ABC):
    """Persistent item store as seen by the backup engine.

    `key` arguments are the caller's account key; implementations use it
    to decrypt/encrypt entities at rest.
    """

    @abstractmethod
    def get_vaults(self, key: bytes) -> List[Vault]:
        """All vaults of the current user."""

    @abstractmethod
    def get_items(self, key: bytes) -> List[Item]:
        """All items of the current user."""

    @abstractmethod
    def get_categories(self, key: bytes) -> List[Category]:
        """All categories of the current user."""

    @abstractmethod
    def get_settings(self) -> Optional[Dict[str, Any]]:
        """User settings, or None when none are stored."""

    @abstractmethod
    def create_vault(self, vault: Vault, key: bytes) -> Vault:
        """Persist a vault. Raises on failure."""

    @abstractmethod
    def create_category(self, category: Category, key: bytes) -> Category:
        """Persist a category. Raises on failure."""

    @abstractmethod
    def create_item(self, item: Item, key: bytes) -> Item:
        """Persist an item. Raises on failure (e.g. unknown vault)."""

    @abstractmethod
    def record_backup(self, backup_type: str, item_count: int, byte_size: int) -> None:
        """Append a backup-history record and bump the last-backup time."""

    @abstractmethod
    def get_last_backup_at(self) -> Optional[str]:
        """ISO-8601 timestamp of the last recorded backup, or None."""

    def backup_stats(self) -> Dict[str, int]:
        """Total backups and the item count of the latest one."""
        return {"total_backups": 0, "last_item_count": 0}


class SessionProvider(ABC):
    """Source of the caller's unlocked account key."""

    @abstractmethod
    def get_account_key(self) -> Optional[bytes]:
        """The account key, or None when the session is locked."""
