# HushKey: Backup Module - HKB Container Codec
#
# HKB is a self-contained JSON document:
#
#   {version, timestamp, salt, pinHash, wrappedKey?, data{...}, integrity}
#
# V2 (written today):
#   pinKey     = derive_key(PIN, salt)           fixed PBKDF2 count, never stored
#   pinHash    = digest(pinKey)                  PIN check before any decrypt
#   dataKey    = generate_key()                  one per container
#   data.*     = encrypt_object(payload, dataKey)
#   wrappedKey = encrypt(json([byte, ...]), pinKey)
#   integrity  = digest(canonical JSON of everything above)
#
# V1 (read-only): payloads are encrypted directly under the account key and
# there is no wrappedKey. Restoring one needs the unlocked account key.

import binascii
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Union

from cryptography.exceptions import InvalidTag

from ..config import DEFAULT_PBKDF2_ITERATIONS
from ..vault.models import BackupBundle, utc_now_iso
from .errors import (
    AuthenticationError,
    IntegrityError,
    MissingKeyError,
    ParseError,
    UnsupportedVersionError,
)
from .interfaces import CryptoProvider

logger = logging.getLogger(__name__)

MAX_CONTAINER_BYTES = 64 * 1024 * 1024
PAYLOAD_KEYS = ("vaults", "items", "categories", "settings")
REQUIRED_FIELDS = ("version", "data", "integrity", "salt", "pinHash")
# Part of the file format: every reader derives the PIN key with this count.
PIN_KDF_ITERATIONS = DEFAULT_PBKDF2_ITERATIONS
STRING_FIELDS = ("version", "timestamp", "salt", "pinHash", "integrity", "wrappedKey")


class ContainerVersion(str, Enum):
    V1 = "1.0"
    V2 = "2.0"


@dataclass
class HKBContainer:
    """Parsed HKB document. `data` maps payload name to ciphertext."""

    version: str
    timestamp: str
    salt: str
    pin_hash: str
    data: Dict[str, str] = field(default_factory=dict)
    integrity: str = ""
    wrapped_key: Optional[str] = None

    def integrity_payload(self) -> Dict[str, Any]:
        """Fields covered by the digest, in canonical order."""
        payload: Dict[str, Any] = {
            "version": self.version,
            "timestamp": self.timestamp,
            "salt": self.salt,
            "pinHash": self.pin_hash,
        }
        if self.wrapped_key is not None:
            payload["wrappedKey"] = self.wrapped_key
        payload["data"] = self.data
        return payload

    def to_dict(self) -> Dict[str, Any]:
        result = self.integrity_payload()
        result["integrity"] = self.integrity
        return result

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, ensure_ascii=False)

    @classmethod
    def from_dict(cls, raw: Any) -> "HKBContainer":
        """
        Build from a decoded JSON object.

        Raises:
            ParseError: Not an object, a required field is missing/empty, or
                a field has the wrong JSON type.
        """
        if not isinstance(raw, dict):
            raise ParseError("container is not a JSON object")
        missing = [name for name in REQUIRED_FIELDS if not raw.get(name)]
        if missing:
            raise ParseError(f"container missing field(s): {', '.join(missing)}")
        if not isinstance(raw["data"], dict):
            raise ParseError("container data is not an object")
        wrong = [name for name in STRING_FIELDS
                 if raw.get(name) is not None and not isinstance(raw[name], str)]
        wrong += [f"data.{name}" for name, value in raw["data"].items()
                  if not isinstance(value, str)]
        if wrong:
            raise ParseError(f"container field(s) not a string: {', '.join(wrong)}")
        return cls(
            version=raw["version"],
            timestamp=raw.get("timestamp", ""),
            salt=raw["salt"],
            pin_hash=raw["pinHash"],
            data=dict(raw["data"]),
            integrity=raw["integrity"],
            wrapped_key=raw.get("wrappedKey"),
        )

    @classmethod
    def from_json(cls, text: Union[str, bytes]) -> "HKBContainer":
        """
        Raises:
            ParseError: Oversized, not JSON, or structurally invalid.
        """
        if len(text) > MAX_CONTAINER_BYTES:
            raise ParseError("container exceeds maximum size")
        try:
            raw = json.loads(text)
        except (ValueError, UnicodeDecodeError) as exc:
            raise ParseError(f"container is not valid JSON ({exc})")
        return cls.from_dict(raw)


class ContainerCodec:
    """
    Create, verify and open HKB containers.

    Args:
        crypto: Crypto collaborator. Every key derivation, encryption and
            digest goes through it.
        kdf_iterations: PBKDF2 count for the PIN key. Independent of the
            crypto provider's own count.
    """

    def __init__(self, crypto: CryptoProvider, kdf_iterations: int = PIN_KDF_ITERATIONS):
        self.crypto = crypto
        self.kdf_iterations = kdf_iterations

    def _pin_key(self, pin: str, salt: str) -> bytes:
        return self.crypto.derive_key(pin, salt, iterations=self.kdf_iterations)

    # ── Integrity ────────────────────────────────────────────────────

    def compute_integrity(self, container: HKBContainer) -> str:
        canonical = json.dumps(
            container.integrity_payload(), separators=(",", ":"), ensure_ascii=False
        )
        return self.crypto.digest(canonical.encode("utf-8"))

    def verify_integrity(self, container: HKBContainer) -> bool:
        return self.compute_integrity(container) == container.integrity

    # ── Create ───────────────────────────────────────────────────────

    def create(self, bundle: BackupBundle, pin: str) -> HKBContainer:
        """Seal a bundle into a fresh V2 container."""
        if not pin:
            raise ValueError("PIN required for HKB backup")

        salt = self.crypto.generate_salt()
        pin_key = self._pin_key(pin, salt)
        pin_hash = self.crypto.digest(pin_key)

        data_key = self.crypto.generate_key()
        payload = bundle.to_dict()
        data = {
            name: self.crypto.encrypt_object(payload[name], data_key)
            for name in PAYLOAD_KEYS
        }
        wrapped_key = self.crypto.encrypt(json.dumps(list(data_key)), pin_key)

        container = HKBContainer(
            version=ContainerVersion.V2.value,
            timestamp=utc_now_iso(),
            salt=salt,
            pin_hash=pin_hash,
            data=data,
            wrapped_key=wrapped_key,
        )
        container.integrity = self.compute_integrity(container)
        if len(container.to_json()) > MAX_CONTAINER_BYTES:
            raise ValueError("Backup exceeds maximum container size")
        return container

    # ── Restore ──────────────────────────────────────────────────────

    def restore(
        self,
        container: HKBContainer,
        pin: str,
        account_key: Optional[bytes] = None,
    ) -> BackupBundle:
        """
        Open a container.

        Checks run in a fixed order and each one fails before any payload
        is decrypted: integrity, version, then the PIN (V2) or the
        presence of the account key (V1).

        Raises:
            IntegrityError: Digest mismatch.
            UnsupportedVersionError: Unknown version tag.
            AuthenticationError: Wrong PIN, wrong key, or payload tampering.
            MissingKeyError: V1 container without an account key.
            ParseError: V2 container without a wrapped key.
        """
        if not self.verify_integrity(container):
            raise IntegrityError("Backup file integrity check failed")

        try:
            version = ContainerVersion(container.version)
        except ValueError:
            raise UnsupportedVersionError(container.version)

        if version is ContainerVersion.V2:
            data_key = self._unwrap_data_key(container, pin)
        elif version is ContainerVersion.V1:
            if not account_key:
                raise MissingKeyError(
                    "This is a legacy backup requiring the account master key. "
                    "Unlock the vault to restore it."
                )
            data_key = account_key

        return self._decrypt_payloads(container, data_key)

    def _unwrap_data_key(self, container: HKBContainer, pin: str) -> bytes:
        if not container.wrapped_key:
            raise ParseError("version 2.0 container without wrappedKey")
        pin_key = self._pin_key(pin, container.salt)
        if self.crypto.digest(pin_key) != container.pin_hash:
            raise AuthenticationError("Invalid PIN")
        try:
            key_bytes = json.loads(self.crypto.decrypt(container.wrapped_key, pin_key))
            return bytes(key_bytes)
        except (InvalidTag, ValueError, TypeError) as exc:
            raise AuthenticationError("Could not unwrap backup key") from exc

    def _decrypt_payloads(self, container: HKBContainer, key: bytes) -> BackupBundle:
        opened = {}
        for name in PAYLOAD_KEYS:
            encrypted = container.data.get(name)
            if encrypted is None:
                raise ParseError(f"container payload missing: {name}")
            try:
                opened[name] = self.crypto.decrypt_object(encrypted, key)
            except (InvalidTag, ValueError, binascii.Error) as exc:
                raise AuthenticationError(
                    "Backup could not be decrypted with the supplied key"
                ) from exc
        try:
            return BackupBundle.from_dict(opened)
        except (ValueError, TypeError, AttributeError) as exc:
            raise ParseError(f"decrypted payload malformed ({exc})")

    # ── Checks ───────────────────────────────────────────────────────

    def validate_pin(self, container: HKBContainer, pin: str) -> bool:
        """True when `pin` matches the container's PIN hash. Never raises."""
        try:
            return self.crypto.digest(self._pin_key(pin, container.salt)) == container.pin_hash
        except (ValueError, TypeError, AttributeError) as exc:
            logger.debug("PIN validation failed: %s", exc)
            return False

    def validate(self, container: Union[HKBContainer, str, bytes, Dict[str, Any]]) -> bool:
        """Required fields present and integrity digest matches."""
        try:
            if isinstance(container, (str, bytes)):
                container = HKBContainer.from_json(container)
            elif isinstance(container, dict):
                container = HKBContainer.from_dict(container)
        except ParseError as exc:
            logger.debug("Container rejected: %s", exc)
            return False
        return self.verify_integrity(container)
