"""HushKey - Backup, export and restore."""

from .archive import ArchiveCodec, ArchiveEntry
from .backup_history import BackupHistory
from .backup_manager import (
    BackupArtifact,
    BackupFormat,
    BackupHealth,
    BackupManager,
    BackupOptions,
    RestoreResult,
)
from .container import ContainerCodec, ContainerVersion, HKBContainer
from .csv_codec import CSVCodec
from .errors import (
    AuthenticationError,
    BackupError,
    EntityRestoreError,
    IntegrityError,
    MissingKeyError,
    ParseError,
    UnsupportedVersionError,
)
from .progress import BackupProgress, BackupStage

__all__ = [
    "ArchiveCodec",
    "ArchiveEntry",
    "BackupArtifact",
    "BackupFormat",
    "BackupHealth",
    "BackupHistory",
    "BackupManager",
    "BackupOptions",
    "RestoreResult",
    "ContainerCodec",
    "ContainerVersion",
    "HKBContainer",
    "CSVCodec",
    "AuthenticationError",
    "BackupError",
    "EntityRestoreError",
    "IntegrityError",
    "MissingKeyError",
    "ParseError",
    "UnsupportedVersionError",
    "BackupProgress",
    "BackupStage",
]
