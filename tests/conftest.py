"""
Shared pytest fixtures for the HushKey test suite.

Autouse fixtures below isolate tests from live application data:
  - Audit logger -> temp directory (no test events in ./audit_logs)

Fake collaborators give the backup engine deterministic inputs:
  - CountingCrypto: real AES-GCM with a low PBKDF2 count, counts decrypts
  - MemoryStore:    in-memory ItemStore that can be told to reject entities
  - FixedSession:   SessionProvider returning a fixed (or no) account key
"""

import os
from typing import Any, Dict, List, Optional

import pytest

from hushkey.backup.interfaces import ItemStore, SessionProvider
from hushkey.vault.encryption import EncryptionService
from hushkey.vault.models import BackupBundle, Category, Item, ItemType, Vault

TEST_ITERATIONS = 1_000


@pytest.fixture(autouse=True)
def _isolate_audit_logs(tmp_path):
    """Point the global AuditLogger at a temp directory for every test."""
    import hushkey.core.audit_log as audit_mod

    old_logger = audit_mod._audit_logger
    test_logger = audit_mod.AuditLogger(log_dir=tmp_path / "audit_logs")
    audit_mod.set_audit_logger(test_logger)

    yield test_logger

    test_logger.close()
    audit_mod.set_audit_logger(old_logger)


# ── Fakes ────────────────────────────────────────────────────────────


class CountingCrypto(EncryptionService):
    """EncryptionService that records every decrypt-family call."""

    def __init__(self):
        super().__init__(iterations=TEST_ITERATIONS)
        self.decrypt_calls = 0

    def decrypt(self, encrypted, key):
        self.decrypt_calls += 1
        return super().decrypt(encrypted, key)

    def decrypt_binary(self, blob, key):
        self.decrypt_calls += 1
        return super().decrypt_binary(blob, key)


class MemoryStore(ItemStore):
    """In-memory item store.

    Entities whose name is in `reject` make the matching create_* call
    raise, to exercise partial restores.
    """

    def __init__(self, bundle: Optional[BackupBundle] = None, reject=()):
        bundle = bundle or BackupBundle()
        self.vaults: List[Vault] = list(bundle.vaults)
        self.categories: List[Category] = list(bundle.categories)
        self.items: List[Item] = list(bundle.items)
        self.settings = bundle.settings
        self.reject = set(reject)
        self.backups: List[Dict[str, Any]] = []
        self.last_backup_at: Optional[str] = None
        self.reads = 0

    def get_vaults(self, key):
        self.reads += 1
        return list(self.vaults)

    def get_items(self, key):
        self.reads += 1
        return list(self.items)

    def get_categories(self, key):
        self.reads += 1
        return list(self.categories)

    def get_settings(self):
        return self.settings

    def _check(self, name):
        if name in self.reject:
            raise RuntimeError(f"rejected {name}")

    def create_vault(self, vault, key):
        self._check(vault.name)
        self.vaults.append(vault)
        return vault

    def create_category(self, category, key):
        self._check(category.name)
        self.categories.append(category)
        return category

    def create_item(self, item, key):
        self._check(item.name)
        self.items.append(item)
        return item

    def record_backup(self, backup_type, item_count, byte_size):
        self.backups.append(
            {"backup_type": backup_type, "item_count": item_count, "file_size_bytes": byte_size}
        )
        self.last_backup_at = "2026-10-19T08:00:00.000Z"

    def get_last_backup_at(self):
        return self.last_backup_at

    def backup_stats(self):
        return {
            "total_backups": len(self.backups),
            "last_item_count": self.backups[-1]["item_count"] if self.backups else 0,
        }


class FixedSession(SessionProvider):
    def __init__(self, key: Optional[bytes]):
        self.key = key

    def get_account_key(self):
        return self.key


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture
def crypto():
    return CountingCrypto()


@pytest.fixture
def account_key():
    return os.urandom(32)


@pytest.fixture
def session(account_key):
    return FixedSession(account_key)


@pytest.fixture
def locked_session():
    return FixedSession(None)


@pytest.fixture
def sample_bundle():
    """Two vaults, one category, items across several types."""
    personal = Vault(id="vault-personal", name="Personal", description="Home stuff")
    work = Vault(id="vault-work", name="Work", icon="briefcase")
    finance = Category(id="cat-finance", name="Finance", color="#22c55e")

    items = [
        Item(
            id="item-login",
            vault_id=personal.id,
            type=ItemType.LOGIN,
            name="Mail",
            data={
                "username": "alex@example.com",
                "password": "s3cret, \"quoted\"",
                "url": "https://mail.example.com",
                "totp": "JBSWY3DPEHPK3PXP",
            },
            notes="line one\nline two",
            is_favorite=True,
        ),
        Item(
            id="item-card",
            vault_id=personal.id,
            type=ItemType.CARD,
            name="Visa",
            data={
                "holderName": "Alex Doe",
                "number": "4111111111111111",
                "expiry": "09/28",
                "cvv": "123",
                "pin": "0000",
            },
            category_id=finance.id,
        ),
        Item(
            id="item-note",
            vault_id=work.id,
            type=ItemType.NOTE,
            name="Door codes",
            data={"content": "front: 1234"},
        ),
        Item(
            id="item-file",
            vault_id=work.id,
            type=ItemType.FILE,
            name="Contract",
            data={
                "fileName": "contract.txt",
                "attachments": [
                    {"name": "contract.txt", "data": "aGVsbG8gd29ybGQ=", "type": "text/plain"},
                    {"name": "scans/page 1.txt", "data": "data:text/plain;base64,cGFnZSBvbmU="},
                ],
            },
        ),
    ]
    return BackupBundle(
        vaults=[personal, work],
        categories=[finance],
        items=items,
        settings={"theme": "dark", "autoLockMinutes": 5},
    )


@pytest.fixture
def memory_store(sample_bundle):
    return MemoryStore(sample_bundle)


@pytest.fixture
def make_store():
    """Factory for MemoryStore instances (e.g. an empty restore target)."""
    return MemoryStore


@pytest.fixture
def make_session():
    return FixedSession
