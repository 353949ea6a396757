"""
Tests for the backup orchestrator.

Covers the export pipeline for every format, progress events, restore
(full, partial and failed), portable-archive import, validation and the
health report. Collaborators are the in-memory fakes from conftest.
"""

from datetime import datetime, timedelta, timezone

import pytest

from hushkey.backup.archive import ArchiveCodec, ArchiveEntry
from hushkey.backup.backup_manager import (
    NEVER_BACKED_UP_DAYS,
    BackupFormat,
    BackupManager,
    BackupOptions,
    RestoreResult,
)
from hushkey.backup.container import ContainerCodec, HKBContainer
from hushkey.backup.errors import (
    AuthenticationError,
    IntegrityError,
    MissingKeyError,
    ParseError,
)
from hushkey.backup.progress import BackupProgress, BackupStage
from hushkey.core.audit_log import EventType
from hushkey.vault.models import ItemType

PIN = "482916"
PASSWORD = "zip-password-1"


@pytest.fixture
def manager(crypto, memory_store, session):
    return BackupManager(
        crypto=crypto,
        store=memory_store,
        session=session,
        archive=ArchiveCodec(kdf_iterations=1_000),
        container=ContainerCodec(crypto, kdf_iterations=1_000),
    )


@pytest.fixture
def empty_manager(crypto, make_store, session):
    """Manager over an empty store; the restore target."""
    return BackupManager(
        crypto=crypto,
        store=make_store(),
        session=session,
        archive=ArchiveCodec(kdf_iterations=1_000),
        container=ContainerCodec(crypto, kdf_iterations=1_000),
    )


def _options(fmt, **kwargs):
    defaults = {"zip": {"password": PASSWORD}, "hkb": {"pin": PIN}}
    return BackupOptions(format=fmt, **{**defaults.get(fmt, {}), **kwargs})


def _collect(manager, options):
    events = []
    content = manager.create_backup(options, on_progress=events.append)
    return content, events


# ── Progress ─────────────────────────────────────────────────────────


class TestProgress:

    @pytest.mark.parametrize("fmt", [f.value for f in BackupFormat])
    def test_stages_and_progress_never_go_backwards(self, manager, fmt):
        _, events = _collect(manager, _options(fmt))
        assert events[0] == BackupProgress(BackupStage.PREPARING, 10)
        assert events[-1] == BackupProgress(BackupStage.FINALIZING, 100)
        for prev, cur in zip(events, events[1:]):
            assert prev.stage <= cur.stage
            assert prev.progress <= cur.progress
        assert all(0 <= e.progress <= 100 for e in events)

    def test_csv_skips_compressing(self, manager):
        _, events = _collect(manager, _options("csv"))
        assert BackupStage.COMPRESSING not in {e.stage for e in events}

    @pytest.mark.parametrize("fmt", ["zip", "hkb", "raw_csv", "raw_zip"])
    def test_archives_compress(self, manager, fmt):
        _, events = _collect(manager, _options(fmt))
        assert BackupProgress(BackupStage.COMPRESSING, 80) in events

    def test_encrypting_starts_with_item_total(self, manager):
        _, events = _collect(manager, _options("hkb"))
        assert events[1] == BackupProgress(BackupStage.ENCRYPTING, 30, total=4, current=0)

    def test_per_type_events_name_the_type(self, manager):
        _, events = _collect(manager, _options("csv"))
        named = [e for e in events if e.current_item]
        assert [e.current_item for e in named] == ["login", "card", "note", "file"]
        assert all(e.total == 12 for e in named)
        assert [e.current for e in named] == [1, 2, 4, 12]

    def test_iter_backup_returns_artifact(self, manager):
        events = manager.iter_backup(_options("raw_csv"))
        seen = []
        with pytest.raises(StopIteration) as done:
            while True:
                seen.append(next(events))
        artifact = done.value.value
        assert artifact.item_count == 4
        assert artifact.file_name.endswith(".zip")
        assert seen[-1].progress == 100

    def test_stage_order(self):
        assert BackupStage.PREPARING < BackupStage.ENCRYPTING < BackupStage.COMPRESSING
        assert BackupStage.COMPRESSING < BackupStage.FINALIZING
        assert not BackupStage.FINALIZING <= BackupStage.PREPARING

    def test_progress_event_is_frozen(self):
        from dataclasses import FrozenInstanceError

        event = BackupProgress(BackupStage.PREPARING, 10)
        with pytest.raises(FrozenInstanceError):
            event.progress = 20

    def test_progress_to_dict(self):
        event = BackupProgress(BackupStage.ENCRYPTING, 34, current_item="card", current=2, total=12)
        assert event.to_dict() == {
            "stage": "encrypting", "progress": 34, "currentItem": "card",
            "current": 2, "total": 12,
        }


# ── Export preconditions ─────────────────────────────────────────────


class TestExportPreconditions:

    def test_locked_session_reads_nothing(self, crypto, memory_store, locked_session):
        mgr = BackupManager(crypto=crypto, store=memory_store, session=locked_session)
        events = []
        with pytest.raises(MissingKeyError, match="unlock your vault"):
            mgr.create_backup(_options("csv"), on_progress=events.append)
        assert memory_store.reads == 0
        assert events == []
        assert memory_store.backups == []

    def test_zip_needs_password(self, manager, memory_store):
        with pytest.raises(ValueError, match="Password required"):
            manager.create_backup(BackupOptions(format="zip"))
        assert memory_store.reads == 0

    def test_hkb_needs_pin(self, manager):
        with pytest.raises(ValueError, match="PIN required"):
            manager.create_backup(BackupOptions(format="hkb"))

    def test_unknown_format(self):
        with pytest.raises(ValueError):
            BackupOptions(format="tar")

    def test_failure_is_audited(self, manager, _isolate_audit_logs):
        with pytest.raises(ValueError):
            manager.create_backup(BackupOptions(format="hkb"))
        types = [e["event_type"] for e in _isolate_audit_logs.recent_events()]
        assert EventType.BACKUP_FAILED.value in types


# ── Export formats ───────────────────────────────────────────────────


class TestExportFormats:

    def test_success_records_history(self, manager, memory_store):
        content = manager.create_backup(_options("hkb"))
        assert memory_store.backups == [
            {"backup_type": "hkb", "item_count": 4, "file_size_bytes": len(content)}
        ]

    def test_success_is_audited(self, manager, _isolate_audit_logs):
        manager.create_backup(_options("raw_csv"))
        events = _isolate_audit_logs.recent_events()
        created = [e for e in events if e["event_type"] == EventType.BACKUP_CREATED.value]
        assert len(created) == 1
        assert created[0]["details"]["format"] == "raw_csv"
        assert created[0]["message"].startswith("Backup: ")

    def test_hkb_is_a_container(self, manager):
        content = manager.create_backup(_options("hkb"))
        container = HKBContainer.from_json(content)
        assert container.version == "2.0"
        assert manager.container.validate(container)

    def test_csv_has_one_section_per_present_type(self, manager):
        text = manager.create_backup(_options("csv")).decode("utf-8")
        assert manager.csv.split_sections(text).keys() == {
            "login.csv", "card.csv", "note.csv", "file.csv"
        }

    def test_raw_csv_entries(self, manager):
        files = manager.archive.read_archive(manager.create_backup(_options("raw_csv")))
        assert sorted(files) == [
            "categories.csv", "items_card.csv", "items_file.csv",
            "items_login.csv", "items_note.csv", "vaults.csv",
        ]

    def test_raw_csv_with_attachments(self, manager):
        content = manager.create_backup(_options("raw_csv", include_attachments=True))
        files = manager.archive.read_archive(content)
        assert files["attachments/item-file/contract.txt"] == b"hello world"

    def test_raw_zip_carries_attachments(self, manager):
        files = manager.archive.read_archive(manager.create_backup(_options("raw_zip")))
        assert files["attachments/item-file/contract.txt"] == b"hello world"
        assert files["attachments/item-file/scans_page 1.txt"] == b"page one"

    def test_zip_is_password_protected(self, manager):
        content = manager.create_backup(_options("zip"))
        assert manager.is_password_protected_archive(content)
        assert b"alex@example.com" not in content

    def test_artifact_metadata(self, manager):
        artifact = manager.create_backup_artifact(_options("hkb"))
        assert artifact.format is BackupFormat.HKB
        assert artifact.size_bytes == len(artifact.content)
        assert artifact.file_name.startswith("hushkey-backup-")
        assert artifact.file_name.endswith(".hkb")
        assert BackupFormat.HKB.media_type == "application/json"

    def test_bad_attachment_skipped(self, crypto, make_store, session, sample_bundle):
        item = next(i for i in sample_bundle.items if i.id == "item-file")
        item.data["attachments"].append({"name": "broken.bin", "data": "%%%"})
        mgr = BackupManager(crypto=crypto, store=make_store(sample_bundle), session=session)
        files = mgr.archive.read_archive(mgr.create_backup(_options("raw_zip")))
        assert "attachments/item-file/broken.bin" not in files
        assert "attachments/item-file/contract.txt" in files


# ── Container restore ────────────────────────────────────────────────


class TestContainerRestore:

    def test_full_roundtrip(self, manager, empty_manager, sample_bundle):
        content = manager.create_backup(_options("hkb"))
        result = empty_manager.restore_from_container(content, PIN)

        assert result.success is True
        assert result.errors == []
        assert (result.vaults_restored, result.categories_restored, result.items_restored) == (2, 1, 4)
        store = empty_manager.store
        assert [v.id for v in store.vaults] == ["vault-personal", "vault-work"]
        assert store.items == sample_bundle.items
        assert store.categories == sample_bundle.categories

    def test_restore_progress(self, manager, empty_manager):
        content = manager.create_backup(_options("hkb"))
        events = []
        empty_manager.restore_from_container(content, PIN, on_progress=events.append)
        assert events[0].stage is BackupStage.PREPARING
        assert events[-1] == BackupProgress(BackupStage.FINALIZING, 100)

    def test_partial_restore_keeps_going(self, manager, crypto, make_store, session):
        content = manager.create_backup(_options("hkb"))
        target = make_store(reject={"Work", "Finance", "Mail"})
        mgr = BackupManager(crypto=crypto, store=target, session=session,
                            container=ContainerCodec(crypto, kdf_iterations=1_000))

        result = mgr.restore_from_container(content, PIN)

        assert result.success is True
        assert result.vaults_restored == 1
        assert result.categories_restored == 0
        assert result.items_restored == 3
        assert result.errors == [
            "Failed to restore vault: Work",
            "Failed to restore category: Finance",
            "Failed to restore item: Mail (item-login)",
        ]

    def test_wrong_pin(self, crypto, manager, empty_manager):
        content = manager.create_backup(_options("hkb"))
        crypto.decrypt_calls = 0
        result = empty_manager.restore_from_container(content, "000000")
        assert result.success is False
        assert isinstance(result.failure, AuthenticationError)
        assert crypto.decrypt_calls == 0
        assert empty_manager.store.items == []

    def test_tampered_container(self, manager, empty_manager):
        content = manager.create_backup(_options("hkb")).replace(b'"2.0"', b'"2.1"')
        result = empty_manager.restore_from_container(content, PIN)
        assert isinstance(result.failure, IntegrityError)
        assert result.errors == ["Backup file integrity check failed"]

    def test_garbage(self, empty_manager):
        result = empty_manager.restore_from_container(b"not a container", PIN)
        assert isinstance(result.failure, ParseError)

    def test_locked_target(self, manager, crypto, make_store, locked_session):
        content = manager.create_backup(_options("hkb"))
        mgr = BackupManager(crypto=crypto, store=make_store(), session=locked_session,
                            container=ContainerCodec(crypto, kdf_iterations=1_000))
        result = mgr.restore_from_container(content, PIN)
        assert isinstance(result.failure, MissingKeyError)

    def test_failure_audited(self, empty_manager, _isolate_audit_logs):
        empty_manager.restore_from_container(b"{}", PIN)
        types = [e["event_type"] for e in _isolate_audit_logs.recent_events()]
        assert EventType.BACKUP_RESTORE_FAILED.value in types

    def test_result_to_dict(self):
        result = RestoreResult.failed(IntegrityError("bad digest"))
        assert result.to_dict() == {
            "success": False,
            "vaults_restored": 0,
            "categories_restored": 0,
            "items_restored": 0,
            "errors": ["bad digest"],
            "failure": "IntegrityError",
        }


# ── Portable import ──────────────────────────────────────────────────


class TestPortableImport:

    @pytest.mark.parametrize("fmt", ["zip", "raw_csv", "raw_zip"])
    def test_archives_parse_back(self, manager, fmt):
        content = manager.create_backup(_options(fmt))
        bundle = manager.parse_portable_archive(content, PASSWORD)
        assert [v.id for v in bundle.vaults] == ["vault-personal", "vault-work"]
        assert [c.id for c in bundle.categories] == ["cat-finance"]
        assert sorted(i.name for i in bundle.items) == ["Contract", "Door codes", "Mail", "Visa"]
        assert manager.last_parse_errors == []

    def test_csv_parses_items_only(self, manager):
        bundle = manager.parse_portable_archive(manager.create_backup(_options("csv")))
        assert bundle.vaults == []
        assert len(bundle.items) == 4

    def test_csv_note_containing_section_marker(self, manager):
        manager.store.items[0].notes = "hello\n=== note.csv ===\nx"
        bundle = manager.parse_portable_archive(manager.create_backup(_options("csv")))
        assert manager.last_parse_errors == []
        assert len(bundle.items) == 4
        mail = next(i for i in bundle.items if i.name == "Mail")
        assert mail.notes == "hello\n=== note.csv ===\nx"

    def test_restore_imported_zip(self, manager, empty_manager):
        content = manager.create_backup(_options("zip"))
        bundle = empty_manager.parse_portable_archive(content, PASSWORD)
        result = empty_manager.restore_bundle(bundle)
        assert (result.vaults_restored, result.items_restored) == (2, 4)

    def test_encrypted_without_password(self, manager):
        content = manager.create_backup(_options("zip"))
        assert manager.parse_portable_archive(content) is None
        assert isinstance(manager.last_parse_failure, MissingKeyError)

    def test_encrypted_wrong_password(self, manager):
        content = manager.create_backup(_options("zip"))
        assert manager.parse_portable_archive(content, "nope") is None
        assert isinstance(manager.last_parse_failure, AuthenticationError)

    def test_bad_table_skipped(self, manager):
        logins = manager.csv.encode_by_type(manager.store.items, ItemType.LOGIN)
        content = ArchiveCodec().create_archive([
            ArchiveEntry("items_passport.csv", "Name\r\nX\r\n"),
            ArchiveEntry("items_login.csv", logins),
            ArchiveEntry("readme.txt", "ignored"),
        ])
        bundle = manager.parse_portable_archive(content)
        assert [i.name for i in bundle.items] == ["Mail"]
        assert len(manager.last_parse_errors) == 1
        assert manager.last_parse_errors[0].source == "items_passport.csv"

    def test_unreadable_bytes(self, manager):
        assert manager.parse_portable_archive(b"\xff\xfe\x00\x01") is None
        assert isinstance(manager.last_parse_failure, ParseError)

    def test_text_without_sections(self, manager):
        assert manager.parse_portable_archive(b"Name,Username\r\n") is None

    def test_restore_bundle_locked(self, crypto, make_store, locked_session, sample_bundle):
        mgr = BackupManager(crypto=crypto, store=make_store(), session=locked_session)
        result = mgr.restore_bundle(sample_bundle)
        assert result.success is False
        assert isinstance(result.failure, MissingKeyError)


# ── Validation ───────────────────────────────────────────────────────


class TestValidation:

    def test_valid(self, manager):
        assert manager.validate_container(manager.create_backup(_options("hkb")), PIN) is True

    def test_wrong_pin(self, manager):
        assert manager.validate_container(manager.create_backup(_options("hkb")), "1111") is False

    def test_tampered(self, manager):
        content = manager.create_backup(_options("hkb")).replace(b'"2.0"', b'"2.1"')
        assert manager.validate_container(content, PIN) is False

    def test_garbage(self, manager):
        assert manager.validate_container(b"[]", PIN) is False

    def test_non_string_salt_with_valid_digest(self, manager):
        container = HKBContainer.from_json(manager.create_backup(_options("hkb")))
        container.salt = 12345
        container.integrity = manager.container.compute_integrity(container)
        content = container.to_json().encode("utf-8")

        assert manager.validate_container(content, PIN) is False
        result = manager.restore_from_container(content, PIN)
        assert result.success is False
        assert isinstance(result.failure, ParseError)


# ── Health ───────────────────────────────────────────────────────────


def _days_ago(days):
    stamp = datetime.now(timezone.utc) - timedelta(days=days, hours=1)
    return stamp.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class TestBackupHealth:

    def test_never_backed_up(self, manager):
        health = manager.get_backup_health()
        assert health.status == "critical"
        assert health.days_since_last_backup == NEVER_BACKED_UP_DAYS
        assert health.recommendation == "No backups found. Create your first backup now!"
        assert manager.get_last_backup_date() is None

    def test_healthy_after_backup(self, manager, memory_store):
        manager.create_backup(_options("hkb"))
        memory_store.last_backup_at = _days_ago(0)
        health = manager.get_backup_health()
        assert health.status == "healthy"
        assert health.total_backups == 1
        assert health.last_backup_item_count == 4
        assert health.recommendation == "Your backups are up to date"

    def test_warning(self, manager, memory_store):
        memory_store.last_backup_at = _days_ago(40)
        health = manager.get_backup_health(frequency_days=30)
        assert health.status == "warning"
        assert health.days_since_last_backup == 40
        assert health.recommendation.startswith("Warning: Last backup was 40 days ago")

    def test_critical(self, manager, memory_store):
        memory_store.last_backup_at = _days_ago(61)
        health = manager.get_backup_health(frequency_days=30)
        assert health.status == "critical"
        assert "Create a backup immediately!" in health.recommendation

    def test_frequency_from_constructor(self, crypto, memory_store, session):
        memory_store.last_backup_at = _days_ago(10)
        mgr = BackupManager(crypto=crypto, store=memory_store, session=session,
                            backup_frequency_days=7)
        assert mgr.get_backup_health().status == "warning"

    def test_last_backup_date_is_utc(self, manager, memory_store):
        memory_store.last_backup_at = "2026-01-02T03:04:05.000Z"
        assert manager.get_last_backup_date() == datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

    def test_to_dict(self, manager):
        d = manager.get_backup_health().to_dict()
        assert set(d) == {"status", "days_since_last_backup", "total_backups",
                          "last_backup_item_count", "recommendation"}
