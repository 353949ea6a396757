# HushKey: Vault Module
#
# Domain entities and the AES-256-GCM / PBKDF2 encryption service.
# The SQLite item store lives in `hushkey.vault.local_store` and is
# imported directly by callers that need it.

from .encryption import EncryptionService, verify_master_password
from .models import BackupBundle, Category, Item, ItemType, Vault

__all__ = [
    "EncryptionService",
    "verify_master_password",
    "BackupBundle",
    "Category",
    "Item",
    "ItemType",
    "Vault",
]
