# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Field-level encryption and secure randomness for student PII.

This module provides the SecurityService used by the registries to:
- Encrypt/decrypt PII columns with AES-256-GCM (token: iv:tag:ciphertext)
- Hash and verify values with scrypt
- Generate human-friendly device and student codes
- Redact sensitive fields before anything is written to a log

Example:
    >>> security = SecurityService(encryption_key="a-32-character-or-longer-secret!!")
    >>> token = security.encrypt("Ada")
    >>> security.decrypt(token)
    'Ada'
"""

import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

if TYPE_CHECKING:
    from src.core.config.settings import SecuritySettings

logger = logging.getLogger(__name__)

# No I, L, O, 0 or 1: codes are read aloud and typed by children.
CODE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"
CODE_LETTERS = "".join(ch for ch in CODE_ALPHABET if ch.isalpha())

DEVICE_CODE_MIN_LENGTH = 6
DEVICE_CODE_MAX_LENGTH = 8
STUDENT_CODE_MIN_LENGTH = 3
STUDENT_CODE_MAX_LENGTH = 6

DEFAULT_AAD_LABEL = "student-data"
DEVELOPMENT_KEY = "default-key-for-development-only-change-in-production"
MIN_KEY_LENGTH = 32

SENSITIVE_FIELDS = frozenset(
    {
        "first_name",
        "last_name",
        "firstName",
        "lastName",
        "email",
        "phone",
        "address",
        "password",
    }
)
REDACTED = "[REDACTED]"


class SecurityError(Exception):
    """Base exception for cryptographic operations."""

    pass


class EncryptionError(SecurityError):
    """Raised when a value cannot be encrypted."""

    pass


class DecryptionError(SecurityError):
    """Raised when a token is malformed, tampered with, or from another key."""

    pass


@dataclass
class EncryptionSetupReport:
    """Result of validate_encryption_setup().

    Attributes:
        is_valid: False when the key is missing or too short.
        warnings: Human-readable misconfiguration notes.
    """

    is_valid: bool
    warnings: list[str] = field(default_factory=list)


def sanitize_for_logging(data: Any) -> Any:
    """Return a copy of a mapping with sensitive fields redacted.

    Nested mappings and lists of mappings are redacted as well. Non-mapping
    values are returned unchanged.
    """
    if isinstance(data, list):
        return [sanitize_for_logging(item) for item in data]
    if not isinstance(data, dict):
        return data

    sanitized: dict[str, Any] = {}
    for key, value in data.items():
        if key in SENSITIVE_FIELDS and value:
            sanitized[key] = REDACTED
        else:
            sanitized[key] = sanitize_for_logging(value)
    return sanitized


class SecurityService:
    """AES-256-GCM field encryption, scrypt hashing and code generation.

    The AES key is derived once at construction from the configured secret
    with scrypt and a fixed salt, so tokens written by one process can be
    read by every other process sharing the same secret.

    Attributes:
        _key_configured: Whether an explicit secret was supplied.
        _aesgcm: Cipher bound to the derived key.
        _aad: Associated data authenticated with every token.
    """

    KEY_LENGTH = 32
    IV_LENGTH = 16
    TAG_LENGTH = 16
    HASH_SALT_LENGTH = 16
    HASH_LENGTH = 64

    # scrypt cost parameters (N=2**14, r=8, p=1)
    SCRYPT_N = 16384
    SCRYPT_R = 8
    SCRYPT_P = 1

    def __init__(
        self,
        encryption_key: str | None = None,
        key_salt: str = "salt",
        aad_label: str = DEFAULT_AAD_LABEL,
    ) -> None:
        """Initialize the security service.

        Args:
            encryption_key: Secret the AES key is derived from. None or an
                empty string falls back to the development key.
            key_salt: Fixed salt for key derivation.
            aad_label: Domain label bound into every token.
        """
        self._configured_key = encryption_key or None
        self._key_configured = self._configured_key is not None
        key_source = self._configured_key or DEVELOPMENT_KEY

        if not self._key_configured:
            logger.warning(
                "Using default encryption key. Set ENCRYPTION_KEY environment variable in production."
            )

        derived = self._scrypt(key_source.encode("utf-8"), key_salt.encode("utf-8"), self.KEY_LENGTH)
        self._aesgcm = AESGCM(derived)
        self._aad = aad_label.encode("utf-8")

    @classmethod
    def from_settings(cls, settings: "SecuritySettings") -> "SecurityService":
        """Build a service from SecuritySettings."""
        key = settings.encryption_key.get_secret_value() if settings.encryption_key else None
        return cls(
            encryption_key=key,
            key_salt=settings.key_salt,
            aad_label=settings.aad_label,
        )

    # =========================================================================
    # Encryption
    # =========================================================================

    def encrypt(self, plaintext: str | None) -> str | None:
        """Encrypt a value into an ``iv:tag:ciphertext`` hex token.

        Empty or blank input is returned unchanged.

        Raises:
            EncryptionError: If the cipher operation fails.
        """
        if not plaintext or not plaintext.strip():
            return plaintext

        try:
            iv = secrets.token_bytes(self.IV_LENGTH)
            sealed = self._aesgcm.encrypt(iv, plaintext.encode("utf-8"), self._aad)
        except Exception as e:
            logger.error("Encryption failed: %s", type(e).__name__)
            raise EncryptionError("Failed to encrypt data") from e

        ciphertext, tag = sealed[: -self.TAG_LENGTH], sealed[-self.TAG_LENGTH :]
        return f"{iv.hex()}:{tag.hex()}:{ciphertext.hex()}"

    def decrypt(self, token: str | None) -> str | None:
        """Decrypt an ``iv:tag:ciphertext`` token.

        Empty or blank input is returned unchanged.

        Raises:
            DecryptionError: If the token is malformed or fails authentication.
        """
        if not token or not token.strip():
            return token

        parts = token.split(":")
        if len(parts) != 3:
            logger.error("Decryption failed: invalid encrypted data format")
            raise DecryptionError("Failed to decrypt data")

        try:
            iv = bytes.fromhex(parts[0])
            tag = bytes.fromhex(parts[1])
            ciphertext = bytes.fromhex(parts[2])
            plaintext = self._aesgcm.decrypt(iv, ciphertext + tag, self._aad)
            return plaintext.decode("utf-8")
        except (InvalidTag, ValueError, UnicodeDecodeError) as e:
            logger.error("Decryption failed: %s", type(e).__name__)
            raise DecryptionError("Failed to decrypt data") from e

    # =========================================================================
    # Hashing
    # =========================================================================

    def hash(self, data: str) -> str:
        """Hash a value with a random salt.

        Returns:
            ``salt_hex:hash_hex``, or the input unchanged when it is blank.
        """
        if not data or not data.strip():
            return data

        salt = secrets.token_bytes(self.HASH_SALT_LENGTH)
        digest = self._scrypt(data.encode("utf-8"), salt, self.HASH_LENGTH)
        return f"{salt.hex()}:{digest.hex()}"

    def verify_hash(self, data: str, hashed: str) -> bool:
        """Verify a value against a ``salt_hex:hash_hex`` string in constant time."""
        if not data or not hashed:
            return False

        parts = hashed.split(":")
        if len(parts) != 2:
            return False

        try:
            salt = bytes.fromhex(parts[0])
            expected = bytes.fromhex(parts[1])
            actual = self._scrypt(data.encode("utf-8"), salt, len(expected))
        except ValueError as e:
            logger.warning("Hash verification failed: %s", str(e))
            return False

        return hmac.compare_digest(expected, actual)

    # =========================================================================
    # Random codes
    # =========================================================================

    def generate_secure_random(self, length: int, charset: str | None = None) -> str:
        """Pick ``length`` characters uniformly from ``charset`` using a CSPRNG."""
        if length < 1:
            raise ValueError("Length must be positive")
        chars = charset or CODE_ALPHABET
        return "".join(secrets.choice(chars) for _ in range(length))

    def generate_device_code(self, length: int | None = None) -> str:
        """Generate a device code of 6-8 characters (random length if omitted)."""
        if length is None:
            length = DEVICE_CODE_MIN_LENGTH + secrets.randbelow(3)
        if not DEVICE_CODE_MIN_LENGTH <= length <= DEVICE_CODE_MAX_LENGTH:
            raise ValueError(
                f"Device code length must be between {DEVICE_CODE_MIN_LENGTH} "
                f"and {DEVICE_CODE_MAX_LENGTH} characters"
            )
        return self.generate_secure_random(length)

    def generate_student_code(self, length: int | None = None) -> str:
        """Generate a student code of 3-6 characters that starts with a letter.

        Without an explicit length a 4-6 character code is produced. A
        leading digit is replaced by a random letter; the rest of the code
        is kept.
        """
        if length is None:
            length = 4 + secrets.randbelow(3)
        if not STUDENT_CODE_MIN_LENGTH <= length <= STUDENT_CODE_MAX_LENGTH:
            raise ValueError(
                f"Student code length must be between {STUDENT_CODE_MIN_LENGTH} "
                f"and {STUDENT_CODE_MAX_LENGTH} characters"
            )

        code = self.generate_secure_random(length)
        if code[0].isdigit():
            code = secrets.choice(CODE_LETTERS) + code[1:]
        return code

    # =========================================================================
    # Diagnostics
    # =========================================================================

    def validate_encryption_setup(self) -> EncryptionSetupReport:
        """Report a missing or weak encryption key.

        A failing report does not stop the service; callers are expected to
        surface the warnings at startup.
        """
        report = EncryptionSetupReport(is_valid=True)

        if not self._key_configured:
            report.warnings.append("Using default encryption key - set ENCRYPTION_KEY in production")
            report.is_valid = False
        elif len(self._configured_key) < MIN_KEY_LENGTH:
            report.warnings.append(
                f"Encryption key should be at least {MIN_KEY_LENGTH} characters long"
            )
            report.is_valid = False

        return report

    def sanitize_for_logging(self, data: Any) -> Any:
        """Redact sensitive fields; see sanitize_for_logging()."""
        return sanitize_for_logging(data)

    def _scrypt(self, password: bytes, salt: bytes, length: int) -> bytes:
        return hashlib.scrypt(
            password,
            salt=salt,
            n=self.SCRYPT_N,
            r=self.SCRYPT_R,
            p=self.SCRYPT_P,
            dklen=length,
        )
