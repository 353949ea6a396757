"""Backup manager: export, restore, validate and report on vault backups.

Exports pull every vault, category and item through the item store and hand
them to one of the codecs:

  csv      one text file, ``=== <type>.csv ===`` sections per item type
  zip      password-protected archive, each entry AES-GCM sealed
  hkb      versioned encrypted container, unlocked by a PIN
  raw_csv  plain archive: vaults.csv, categories.csv, items_<type>.csv
  raw_zip  raw_csv plus ``attachments/<itemId>/<name>`` files

Progress is an explicit event stream (iter_backup). Restores write vaults,
then categories, then items back one at a time and keep going past
per-entity failures.
"""

import base64
import binascii
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, Generator, List, Optional, Union

from ..config import DEFAULT_BACKUP_FREQUENCY_DAYS
from ..core.audit_log import EventSeverity, EventType, get_audit_logger
from ..vault.models import BackupBundle, Item, ItemType
from .archive import ArchiveCodec, ArchiveEntry, attachment_entry_name
from .container import ContainerCodec, HKBContainer
from .csv_codec import CATEGORIES_FILE, VAULTS_FILE, CSVCodec, items_file_name
from .errors import BackupError, EntityRestoreError, MissingKeyError, ParseError
from .interfaces import CryptoProvider, ItemStore, SessionProvider
from .progress import BackupProgress, BackupStage

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[BackupProgress], None]

NEVER_BACKED_UP_DAYS = 999


class BackupFormat(str, Enum):
    CSV = "csv"
    ZIP = "zip"
    HKB = "hkb"
    RAW_CSV = "raw_csv"
    RAW_ZIP = "raw_zip"

    @property
    def media_type(self) -> str:
        return _MEDIA_TYPES[self]

    @property
    def extension(self) -> str:
        return {BackupFormat.RAW_CSV: "zip", BackupFormat.RAW_ZIP: "zip"}.get(self, self.value)


_MEDIA_TYPES = {
    BackupFormat.CSV: "text/csv",
    BackupFormat.ZIP: "application/zip",
    BackupFormat.HKB: "application/json",
    BackupFormat.RAW_CSV: "application/zip",
    BackupFormat.RAW_ZIP: "application/zip",
}


@dataclass
class BackupOptions:
    format: BackupFormat
    password: Optional[str] = None
    pin: Optional[str] = None
    include_attachments: bool = False

    def __post_init__(self):
        self.format = BackupFormat(self.format)


@dataclass
class BackupArtifact:
    """Finished export."""

    content: bytes
    format: BackupFormat
    item_count: int

    @property
    def size_bytes(self) -> int:
        return len(self.content)

    @property
    def file_name(self) -> str:
        stamp = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        return f"hushkey-backup-{stamp}.{self.format.extension}"


@dataclass
class RestoreResult:
    """Outcome of a restore.

    success is False only when the backup could not be opened at all; in
    that case `failure` holds the typed error. Per-entity failures leave
    success True and are listed in `errors` in encounter order.
    """

    success: bool = False
    vaults_restored: int = 0
    categories_restored: int = 0
    items_restored: int = 0
    errors: List[str] = field(default_factory=list)
    failure: Optional[BackupError] = None

    @classmethod
    def failed(cls, error: BackupError) -> "RestoreResult":
        return cls(success=False, errors=[str(error)], failure=error)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "vaults_restored": self.vaults_restored,
            "categories_restored": self.categories_restored,
            "items_restored": self.items_restored,
            "errors": list(self.errors),
            "failure": type(self.failure).__name__ if self.failure else None,
        }


@dataclass
class BackupHealth:
    status: str
    days_since_last_backup: int
    total_backups: int
    last_backup_item_count: int
    recommendation: str

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "days_since_last_backup": self.days_since_last_backup,
            "total_backups": self.total_backups,
            "last_backup_item_count": self.last_backup_item_count,
            "recommendation": self.recommendation,
        }


def _parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class BackupManager:
    """Orchestrates backup export, restore and validation.

    Args:
        crypto: Crypto collaborator used by the container codec.
        store: Item store backups are read from and restored into.
        session: Supplies the caller's unlocked account key.
        archive: Archive codec (default: ArchiveCodec()).
        csv_codec: CSV codec (default: CSVCodec()).
        container: HKB codec (default: ContainerCodec(crypto)).
        backup_frequency_days: Expected interval for get_backup_health().
    """

    def __init__(
        self,
        crypto: CryptoProvider,
        store: ItemStore,
        session: SessionProvider,
        archive: Optional[ArchiveCodec] = None,
        csv_codec: Optional[CSVCodec] = None,
        backup_frequency_days: int = DEFAULT_BACKUP_FREQUENCY_DAYS,
        container: Optional[ContainerCodec] = None,
    ):
        self.crypto = crypto
        self.store = store
        self.session = session
        self.archive = archive or ArchiveCodec()
        self.csv = csv_codec or CSVCodec()
        self.container = container or ContainerCodec(crypto)
        self.backup_frequency_days = backup_frequency_days
        self.last_parse_errors: List[ParseError] = []
        self.last_parse_failure: Optional[BackupError] = None

    def _require_account_key(self) -> bytes:
        key = self.session.get_account_key()
        if not key:
            raise MissingKeyError("Master key not available. Please unlock your vault first.")
        return key

    # ── Export ───────────────────────────────────────────────────────

    def create_backup(
        self, options: BackupOptions, on_progress: Optional[ProgressCallback] = None
    ) -> bytes:
        """Run an export and return the artifact bytes."""
        return self.create_backup_artifact(options, on_progress).content

    def create_backup_artifact(
        self, options: BackupOptions, on_progress: Optional[ProgressCallback] = None
    ) -> BackupArtifact:
        events = self.iter_backup(options)
        while True:
            try:
                event = next(events)
            except StopIteration as done:
                return done.value
            if on_progress is not None:
                on_progress(event)

    def iter_backup(
        self, options: BackupOptions
    ) -> Generator[BackupProgress, None, BackupArtifact]:
        """
        Export as a stream of progress events; the generator's return value
        is the BackupArtifact.

        Raises:
            MissingKeyError: Session is locked (before any data is read).
            ValueError: Password/PIN missing for a format that needs one.
        """
        try:
            artifact = yield from self._export(options)
        except (BackupError, ValueError) as exc:
            self._audit(
                EventType.BACKUP_FAILED,
                f"{options.format.value} export failed: {exc}",
                {"format": options.format.value, "error": type(exc).__name__},
                EventSeverity.WARNING,
            )
            raise
        return artifact

    def _export(self, options: BackupOptions):
        fmt = options.format
        if fmt is BackupFormat.ZIP and not options.password:
            raise ValueError("Password required for ZIP backup")
        if fmt is BackupFormat.HKB and not options.pin:
            raise ValueError("PIN required for HKB backup")

        key = self._require_account_key()

        yield BackupProgress(BackupStage.PREPARING, 10)

        bundle = BackupBundle(
            vaults=self.store.get_vaults(key),
            categories=self.store.get_categories(key),
            items=self.store.get_items(key),
            settings=self.store.get_settings(),
        )

        yield BackupProgress(
            BackupStage.ENCRYPTING, 30, total=len(bundle.items), current=0
        )

        if fmt is BackupFormat.CSV:
            tables = yield from self._item_tables(bundle, span=50)
            text = self.csv.encode_sections(
                {f"{t.slug}.csv": body for t, body in tables}
            )
            content = text.encode("utf-8")

        elif fmt is BackupFormat.HKB:
            yield BackupProgress(BackupStage.ENCRYPTING, 40)
            container = self.container.create(bundle, options.pin)
            yield BackupProgress(BackupStage.COMPRESSING, 80)
            content = container.to_json().encode("utf-8")

        else:
            entries = self._base_entries(bundle)
            tables = yield from self._item_tables(bundle, span=40)
            entries.extend(ArchiveEntry(items_file_name(t), body) for t, body in tables)
            if fmt is BackupFormat.RAW_ZIP or (
                fmt is BackupFormat.RAW_CSV and options.include_attachments
            ):
                entries.extend(self._attachment_entries(bundle.items))
            yield BackupProgress(BackupStage.COMPRESSING, 80)
            if fmt is BackupFormat.ZIP:
                content = self.archive.create_password_protected_archive(
                    entries, options.password
                )
            else:
                content = self.archive.create_archive(entries)

        yield BackupProgress(BackupStage.FINALIZING, 95)

        self.store.record_backup(fmt.value, len(bundle.items), len(content))
        self._audit(
            EventType.BACKUP_CREATED,
            f"{fmt.value} backup created",
            {"format": fmt.value, "item_count": len(bundle.items), "size_bytes": len(content)},
        )

        yield BackupProgress(BackupStage.FINALIZING, 100)
        return BackupArtifact(content=content, format=fmt, item_count=len(bundle.items))

    def _item_tables(self, bundle: BackupBundle, span: int):
        """Encode one table per non-empty item type, emitting a progress
        event for each."""
        types = list(ItemType)
        tables = []
        for index, item_type in enumerate(types):
            if not bundle.items_of_type(item_type):
                continue
            yield BackupProgress(
                BackupStage.ENCRYPTING,
                30 + int(index / len(types) * span),
                current_item=item_type.slug,
                total=len(types),
                current=index + 1,
            )
            tables.append((item_type, self.csv.encode_by_type(bundle.items, item_type)))
        return tables

    def _base_entries(self, bundle: BackupBundle) -> List[ArchiveEntry]:
        return [
            ArchiveEntry(VAULTS_FILE, self.csv.encode_vaults(bundle.vaults)),
            ArchiveEntry(CATEGORIES_FILE, self.csv.encode_categories(bundle.categories)),
        ]

    @staticmethod
    def _attachment_entries(items: List[Item]) -> List[ArchiveEntry]:
        entries = []
        for item in items:
            for attachment in item.attachments:
                name, data = attachment.get("name"), attachment.get("data")
                if not name or not data:
                    continue
                try:
                    raw = _decode_attachment(data)
                except (ValueError, binascii.Error) as exc:
                    logger.warning("Skipping attachment %s of item %s: %s", name, item.id, exc)
                    continue
                entries.append(ArchiveEntry(attachment_entry_name(item.id, name), raw))
        return entries

    # ── Restore ──────────────────────────────────────────────────────

    def restore_from_container(
        self,
        content: Union[str, bytes],
        pin: str,
        account_key: Optional[bytes] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> RestoreResult:
        """
        Open an HKB container and write its contents into the store.

        Args:
            content: Container JSON text.
            pin: Backup PIN (V2).
            account_key: Account master key; only needed for V1 containers.
        """
        notify = on_progress or (lambda event: None)
        try:
            store_key = self._require_account_key()
            notify(BackupProgress(BackupStage.PREPARING, 10))
            container = HKBContainer.from_json(content)
            notify(BackupProgress(BackupStage.ENCRYPTING, 30))
            bundle = self.container.restore(container, pin, account_key)
        except BackupError as exc:
            self._audit(
                EventType.BACKUP_RESTORE_FAILED,
                f"Container restore failed: {exc}",
                {"error": type(exc).__name__},
                EventSeverity.ALERT,
            )
            return RestoreResult.failed(exc)

        notify(BackupProgress(BackupStage.FINALIZING, 60))
        result = self.restore_bundle(bundle, store_key)
        notify(BackupProgress(BackupStage.FINALIZING, 100))
        return result

    def restore_bundle(
        self, bundle: BackupBundle, key: Optional[bytes] = None
    ) -> RestoreResult:
        """Write vaults, then categories, then items into the store.

        A failed entity is recorded and skipped; everything else is still
        attempted.
        """
        if key is None:
            try:
                key = self._require_account_key()
            except MissingKeyError as exc:
                return RestoreResult.failed(exc)

        result = RestoreResult(success=True)

        for vault in bundle.vaults:
            try:
                self.store.create_vault(vault, key)
                result.vaults_restored += 1
            except Exception as exc:
                self._entity_failed(result, "vault", vault.name, exc)

        for category in bundle.categories:
            try:
                self.store.create_category(category, key)
                result.categories_restored += 1
            except Exception as exc:
                self._entity_failed(result, "category", category.name, exc)

        for item in bundle.items:
            try:
                self.store.create_item(item, key)
                result.items_restored += 1
            except Exception as exc:
                self._entity_failed(result, "item", f"{item.name} ({item.id})", exc)

        self._audit(
            EventType.BACKUP_RESTORED,
            "Backup restored",
            {
                "vaults": result.vaults_restored,
                "categories": result.categories_restored,
                "items": result.items_restored,
                "errors": len(result.errors),
            },
            EventSeverity.WARNING if result.errors else EventSeverity.INFO,
        )
        return result

    @staticmethod
    def _entity_failed(result: RestoreResult, kind: str, label: str, exc: Exception):
        error = EntityRestoreError(kind, label, cause=exc)
        logger.warning("%s (%s)", error, exc)
        result.errors.append(str(error))

    # ── Validation / inspection ──────────────────────────────────────

    def validate_container(self, content: Union[str, bytes], pin: str) -> bool:
        """True when the container is intact and `pin` opens it. Never raises."""
        try:
            container = HKBContainer.from_json(content)
        except ParseError as exc:
            logger.info("Container validation failed: %s", exc)
            return False
        valid = self.container.verify_integrity(container) and self.container.validate_pin(
            container, pin
        )
        self._audit(EventType.BACKUP_VALIDATED, "Container validated", {"valid": valid})
        return valid

    def is_password_protected_archive(self, content: bytes) -> bool:
        return self.archive.is_password_protected(content)

    def parse_portable_archive(
        self, content: bytes, password: Optional[str] = None
    ) -> Optional[BackupBundle]:
        """
        Decode a csv/zip/raw_csv/raw_zip export back into a bundle.

        Returns None when the input cannot be opened at all (see
        `last_parse_failure`). Malformed individual tables are skipped and
        collected in `last_parse_errors`.
        """
        self.last_parse_errors = []
        self.last_parse_failure = None
        try:
            files = self._portable_files(content, password)
        except BackupError as exc:
            logger.warning("Could not open portable backup: %s", exc)
            self.last_parse_failure = exc
            return None

        bundle = BackupBundle()
        for name, text in files.items():
            try:
                rows = self.csv.parse(text, source=name)
                if name == VAULTS_FILE:
                    bundle.vaults.extend(self.csv.decode_vaults(rows))
                elif name == CATEGORIES_FILE:
                    bundle.categories.extend(self.csv.decode_categories(rows))
                else:
                    bundle.items.extend(self.csv.decode_items(name, rows))
            except ParseError as exc:
                logger.warning("Skipping %s", exc)
                self.last_parse_errors.append(exc)
        return bundle

    def _portable_files(self, content: bytes, password: Optional[str]) -> Dict[str, str]:
        """CSV entry name to text, for any portable format."""
        if self.archive.is_password_protected(content):
            if not password:
                raise MissingKeyError("Password required for encrypted archive")
            files = self.archive.decrypt_archive(content, password)
        elif content[:2] == b"PK":
            files = {}
            for name, raw in self.archive.read_archive(content).items():
                if name.startswith("attachments/"):
                    continue
                try:
                    files[name] = raw.decode("utf-8")
                except UnicodeDecodeError:
                    raise ParseError("entry is not UTF-8 text", source=name)
        else:
            try:
                text = content.decode("utf-8")
            except UnicodeDecodeError:
                raise ParseError("not a ZIP archive or CSV text")
            files = self.csv.split_sections(text)
            if not files:
                raise ParseError("no CSV sections found")
        return {name: text for name, text in files.items() if name.lower().endswith(".csv")}

    # ── Health ───────────────────────────────────────────────────────

    def get_last_backup_date(self) -> Optional[datetime]:
        value = self.store.get_last_backup_at()
        return _parse_timestamp(value) if value else None

    def get_backup_health(self, frequency_days: Optional[int] = None) -> BackupHealth:
        frequency = frequency_days or self.backup_frequency_days
        last_backup = self.get_last_backup_date()
        stats = self.store.backup_stats()

        if last_backup is None:
            days_since = NEVER_BACKED_UP_DAYS
        else:
            days_since = (datetime.now(timezone.utc) - last_backup).days

        if last_backup is None:
            status = "critical"
            recommendation = "No backups found. Create your first backup now!"
        elif days_since > frequency * 2:
            status = "critical"
            recommendation = (
                f"Critical: Last backup was {days_since} days ago. "
                "Create a backup immediately!"
            )
        elif days_since > frequency:
            status = "warning"
            recommendation = (
                f"Warning: Last backup was {days_since} days ago. "
                "Consider creating a backup soon."
            )
        else:
            status = "healthy"
            recommendation = "Your backups are up to date"

        return BackupHealth(
            status=status,
            days_since_last_backup=days_since,
            total_backups=stats.get("total_backups", 0),
            last_backup_item_count=stats.get("last_item_count", 0),
            recommendation=recommendation,
        )

    # ── Helpers ──────────────────────────────────────────────────────

    @staticmethod
    def _audit(
        event_type: EventType,
        message: str,
        details: dict,
        severity: EventSeverity = EventSeverity.INFO,
    ):
        """Best-effort audit logging."""
        try:
            get_audit_logger().log_backup_event(event_type, message, details, severity)
        except Exception:
            logger.warning("Audit log failed: %s", message, exc_info=True)


def _decode_attachment(data: str) -> bytes:
    """Attachment payloads are data URIs or bare base64."""
    if data.startswith("data:"):
        header, _, payload = data.partition(",")
        if not header.endswith(";base64"):
            raise ValueError("unsupported data URI encoding")
        data = payload
    return base64.b64decode(data, validate=True)
