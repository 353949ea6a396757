"""Archive codec: plain ZIP and per-entry encrypted ZIP.

Encrypted archives are ordinary ZIP files whose entries are individually
sealed with AES-256-GCM. Each ``<name>.enc`` entry holds
``base64(nonce || ciphertext)``. The key is derived from the archive
password with a fixed application salt so any client can reopen it.
"""

import base64
import binascii
import io
import logging
import os
import zipfile
from dataclasses import dataclass
from typing import Dict, Iterable, List, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .errors import AuthenticationError, ParseError

logger = logging.getLogger(__name__)

ARCHIVE_SALT = b"hushkey-zip-salt-v1"
ARCHIVE_KDF_ITERATIONS = 100_000
ENCRYPTED_SUFFIX = ".enc"
NONCE_LENGTH = 12

WRONG_PASSWORD_MESSAGE = "Wrong password or corrupt archive"


@dataclass
class ArchiveEntry:
    """A named file inside an archive."""

    name: str
    content: Union[str, bytes]

    @property
    def raw(self) -> bytes:
        if isinstance(self.content, bytes):
            return self.content
        return self.content.encode("utf-8")


def attachment_entry_name(item_id: str, file_name: str) -> str:
    """``attachments/<itemId>/<file name>`` with path separators neutralised."""
    return f"attachments/{item_id}/{file_name.replace('/', '_')}"


class ArchiveCodec:
    """
    Build and open backup archives.

    Args:
        kdf_iterations: PBKDF2 rounds for password-protected archives.
            Archives written with one count can only be read with the same.
    """

    def __init__(self, kdf_iterations: int = ARCHIVE_KDF_ITERATIONS):
        self.kdf_iterations = kdf_iterations

    def _derive_key(self, password: str) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=ARCHIVE_SALT,
            iterations=self.kdf_iterations,
        )
        return kdf.derive(password.encode("utf-8"))

    @staticmethod
    def _check_unique(entries: List[ArchiveEntry]) -> None:
        seen = set()
        for entry in entries:
            if entry.name in seen:
                raise ValueError(f"Duplicate archive entry: {entry.name}")
            seen.add(entry.name)

    @staticmethod
    def _zip(files: Iterable[ArchiveEntry]) -> bytes:
        buf = io.BytesIO()
        with zipfile.ZipFile(
            buf, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9
        ) as zf:
            for entry in files:
                zf.writestr(entry.name, entry.raw)
        return buf.getvalue()

    # ── Writing ──────────────────────────────────────────────────────

    def create_archive(self, entries: Iterable[ArchiveEntry]) -> bytes:
        """Plain ZIP; every entry stored verbatim under its own name."""
        entries = list(entries)
        self._check_unique(entries)
        return self._zip(entries)

    def create_password_protected_archive(
        self, entries: Iterable[ArchiveEntry], password: str
    ) -> bytes:
        """ZIP whose entries are each AES-GCM sealed and renamed ``<name>.enc``."""
        entries = list(entries)
        self._check_unique(entries)
        aes = AESGCM(self._derive_key(password))
        sealed = []
        for entry in entries:
            nonce = os.urandom(NONCE_LENGTH)
            blob = nonce + aes.encrypt(nonce, entry.raw, None)
            sealed.append(ArchiveEntry(
                name=entry.name + ENCRYPTED_SUFFIX,
                content=base64.b64encode(blob).decode("ascii"),
            ))
        return self._zip(sealed)

    # ── Reading ──────────────────────────────────────────────────────

    @staticmethod
    def read_archive(data: bytes) -> Dict[str, bytes]:
        """Entry name to raw bytes. Directories are skipped.

        Raises:
            ParseError: Not a ZIP archive.
        """
        try:
            with zipfile.ZipFile(io.BytesIO(data)) as zf:
                return {
                    info.filename: zf.read(info)
                    for info in zf.infolist()
                    if not info.is_dir()
                }
        except (zipfile.BadZipFile, zipfile.LargeZipFile, EOFError) as exc:
            raise ParseError(f"invalid archive ({exc})")

    def decrypt_archive(self, data: bytes, password: str) -> Dict[str, str]:
        """Open every ``.enc`` entry; names lose the suffix.

        All or nothing: one failed entry fails the whole archive.

        Raises:
            AuthenticationError: Wrong password or a corrupted entry.
            ParseError: Not a ZIP archive.
        """
        files = self.read_archive(data)
        aes = AESGCM(self._derive_key(password))
        opened = {}
        for name, content in files.items():
            if not name.endswith(ENCRYPTED_SUFFIX):
                continue
            try:
                blob = base64.b64decode(content, validate=True)
                if len(blob) <= NONCE_LENGTH:
                    raise ValueError("entry too short")
                plain = aes.decrypt(blob[:NONCE_LENGTH], blob[NONCE_LENGTH:], None)
                opened[name[: -len(ENCRYPTED_SUFFIX)]] = plain.decode("utf-8")
            except (InvalidTag, ValueError, binascii.Error) as exc:
                logger.debug("Archive entry %s failed to open: %s", name, type(exc).__name__)
                raise AuthenticationError(WRONG_PASSWORD_MESSAGE) from exc
        return opened

    @staticmethod
    def is_password_protected(data: bytes) -> bool:
        """True iff the archive has at least one ``.enc`` entry."""
        try:
            with zipfile.ZipFile(io.BytesIO(data)) as zf:
                return any(name.endswith(ENCRYPTED_SUFFIX) for name in zf.namelist())
        except (zipfile.BadZipFile, EOFError):
            return False
