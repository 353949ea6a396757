"""Backup error taxonomy.

Fatal errors abort the whole export/restore and surface one message.
Scoped errors (ParseError, EntityRestoreError) describe a single file or
entity; callers collect them and keep going.
"""

from typing import Optional


class BackupError(Exception):
    """Base class for backup/restore failures."""

    fatal = True


class IntegrityError(BackupError):
    """Container digest does not match its contents. Nothing was decrypted."""


class AuthenticationError(BackupError):
    """Wrong PIN or archive password (or ciphertext failed authentication)."""


class UnsupportedVersionError(BackupError):
    """Container version tag is not one this engine understands."""

    def __init__(self, version: Optional[str]):
        self.version = version
        super().__init__(f"Unsupported backup version: {version!r}")


class MissingKeyError(BackupError):
    """A required key is unavailable (locked session, or V1 restore
    without the account master key)."""


class ParseError(BackupError):
    """Malformed CSV, archive entry or container structure.

    Scoped to `source` (a file or entry name) when one is known.
    """

    fatal = False

    def __init__(self, message: str, source: Optional[str] = None):
        self.source = source
        super().__init__(f"{source}: {message}" if source else message)


class EntityRestoreError(BackupError):
    """A single vault, category or item could not be written back."""

    fatal = False

    def __init__(self, entity_kind: str, label: str, cause: Optional[BaseException] = None):
        self.entity_kind = entity_kind
        self.label = label
        self.cause = cause
        super().__init__(f"Failed to restore {entity_kind}: {label}")
