# HushKey: Vault - Encryption Service
#
# Crypto primitives consumed by the backup engine and the local store:
#   password/PIN + salt -> key (PBKDF2-SHA256)
#   AES-256-GCM for text, JSON objects and raw bytes
#   SHA-256 digests, random keys and salts
#
# Ciphertext layout for every encrypt* call: nonce(12) + ciphertext+tag.
# Text and object variants base64-encode that layout for JSON/TEXT storage.

import base64
import hashlib
import json
import os
from typing import Any, Optional, Tuple

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..config import DEFAULT_PBKDF2_ITERATIONS


class EncryptionService:
    """
    AES-256-GCM / PBKDF2 implementation of the crypto collaborator.

    Flow:
    1. derive_key(password, salt) gives a 256-bit key
    2. encrypt/decrypt use a fresh 96-bit nonce per call
    3. InvalidTag from cryptography signals a wrong key or tampered data

    Args:
        iterations: PBKDF2 iteration count. Tests pass a small value.
    """

    KEY_LENGTH = 32  # 256 bits for AES-256
    SALT_LENGTH = 16
    NONCE_LENGTH = 12  # 96-bit nonce for GCM (recommended)

    def __init__(self, iterations: int = DEFAULT_PBKDF2_ITERATIONS):
        self.iterations = iterations

    # ── Keys ─────────────────────────────────────────────────────────

    def derive_key(self, password: str, salt: str, iterations: Optional[int] = None) -> bytes:
        """
        Derive a 256-bit key from a password or PIN.

        Args:
            password: Master password or backup PIN
            salt: Base64 salt (from generate_salt)
            iterations: Override for formats that carry their own count
        """
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=self.KEY_LENGTH,
            salt=self.decode_from_storage(salt),
            iterations=iterations or self.iterations,
        )
        return kdf.derive(password.encode("utf-8"))

    def generate_salt(self) -> str:
        """Random salt, base64-encoded."""
        return self.encode_for_storage(os.urandom(self.SALT_LENGTH))

    def generate_key(self) -> bytes:
        """Random 256-bit symmetric key."""
        return AESGCM.generate_key(bit_length=256)

    @staticmethod
    def digest(data: bytes) -> str:
        """SHA-256 hex digest."""
        return hashlib.sha256(data).hexdigest()

    # ── Bytes ────────────────────────────────────────────────────────

    def encrypt_binary(self, data: bytes, key: bytes) -> bytes:
        """Encrypt raw bytes. Returns nonce + ciphertext_with_tag."""
        nonce = os.urandom(self.NONCE_LENGTH)
        return nonce + AESGCM(key).encrypt(nonce, data, None)

    def decrypt_binary(self, blob: bytes, key: bytes) -> bytes:
        """
        Decrypt output of encrypt_binary.

        Raises:
            cryptography.exceptions.InvalidTag: Wrong key or tampered data.
            ValueError: Blob too short to hold a nonce.
        """
        if len(blob) < self.NONCE_LENGTH:
            raise ValueError("Encrypted data too short.")
        nonce, ciphertext = self.split_nonce(blob)
        return AESGCM(key).decrypt(nonce, ciphertext, None)

    def split_nonce(self, blob: bytes) -> Tuple[bytes, bytes]:
        return blob[: self.NONCE_LENGTH], blob[self.NONCE_LENGTH :]

    # ── Text / objects ───────────────────────────────────────────────

    def encrypt(self, plaintext: str, key: bytes) -> str:
        """Encrypt text. Returns base64(nonce + ciphertext)."""
        return self.encode_for_storage(
            self.encrypt_binary(plaintext.encode("utf-8"), key)
        )

    def decrypt(self, encrypted: str, key: bytes) -> str:
        """Decrypt output of encrypt().

        Raises:
            cryptography.exceptions.InvalidTag: Wrong key or tampered data.
            ValueError: Not valid base64 / too short.
        """
        return self.decrypt_binary(self.decode_from_storage(encrypted), key).decode("utf-8")

    def encrypt_object(self, value: Any, key: bytes) -> str:
        """JSON-serialize then encrypt."""
        return self.encrypt(json.dumps(value), key)

    def decrypt_object(self, encrypted: str, key: bytes) -> Any:
        """Decrypt then JSON-parse."""
        return json.loads(self.decrypt(encrypted, key))

    # ── Encoding ─────────────────────────────────────────────────────

    @staticmethod
    def encode_for_storage(data: bytes) -> str:
        """Base64-encode binary data for JSON/TEXT storage."""
        return base64.b64encode(data).decode("ascii")

    @staticmethod
    def decode_from_storage(data: str) -> bytes:
        """Decode base64 data. Raises ValueError (binascii.Error) if malformed."""
        return base64.b64decode(data.encode("ascii"), validate=True)


def verify_master_password(password: str) -> Tuple[bool, str]:
    """
    Check a new master password against the minimum policy.

    Requirements:
    - At least 12 characters
    - Mix of uppercase, lowercase, numbers

    Returns:
        (is_valid, error_message)
    """
    if len(password) < 12:
        return False, "Master password must be at least 12 characters long"

    if not any(c.isupper() for c in password):
        return False, "Master password must contain at least one uppercase letter"

    if not any(c.islower() for c in password):
        return False, "Master password must contain at least one lowercase letter"

    if not any(c.isdigit() for c in password):
        return False, "Master password must contain at least one number"

    return True, ""
