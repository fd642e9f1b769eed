"""
Credential vault for long-lived platform access tokens.

Uses AES-256-GCM with a 16-byte random IV and a 16-byte authentication tag.
Blobs are stored as hex of ``IV || TAG || CIPHERTEXT``; decryption also
accepts the same bytes encoded as base64 because older records used it.
"""

import base64
import binascii
import os
import re
from typing import Optional, Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from menu_sync.utils.config import get_config
from menu_sync.utils.exceptions import ConfigurationError, DecryptionError
from menu_sync.utils.logger import get_logger

logger = get_logger(__name__)

IV_LENGTH = 16
TAG_LENGTH = 16
KEY_LENGTH = 32
PBKDF2_ITERATIONS = 100_000
MIN_BLOB_HEX_LENGTH = (IV_LENGTH + TAG_LENGTH) * 2

_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")
_BASE64_RE = re.compile(r"^[A-Za-z0-9+/=_-]+$")
_BASE64_MARKERS = set("+/=-_")


def detect_encoding(value: str) -> str:
    """
    Detect whether a stored blob is hex or base64.

    Characters that only appear in base64 win first, then pure hex, then
    padded-length alphanumerics.

    Returns:
        "hex", "base64" or "unknown"
    """
    if _BASE64_RE.match(value) and any(c in _BASE64_MARKERS for c in value):
        return "base64"
    if _HEX_RE.match(value):
        return "hex"
    if _BASE64_RE.match(value) and len(value) % 4 == 0:
        return "base64"
    return "unknown"


def normalize_to_hex(value: str) -> str:
    """
    Convert a hex or base64 blob into lowercase hex.

    Raises:
        DecryptionError: if the encoding is neither hex nor base64
    """
    encoding = detect_encoding(value)

    if encoding == "hex":
        return value.lower()

    if encoding == "base64":
        standard = value.replace("-", "+").replace("_", "/")
        standard += "=" * (-len(standard) % 4)
        try:
            return base64.b64decode(standard, validate=True).hex()
        except (binascii.Error, ValueError) as e:
            logger.error("Credential blob is not valid base64")
            raise DecryptionError("Invalid base64 ciphertext", reason="invalid_base64") from e

    logger.error("Credential blob has an unknown encoding")
    raise DecryptionError("Unknown ciphertext encoding", reason="unknown_encoding")


def split_blob(value: str) -> Tuple[bytes, bytes, bytes]:
    """
    Validate a stored blob and split it into IV, tag and ciphertext.

    Each validation failure raises DecryptionError with its own reason.
    """
    blob_hex = normalize_to_hex(value)

    if len(blob_hex) < MIN_BLOB_HEX_LENGTH:
        logger.error(f"Credential blob too short: {len(blob_hex)} hex chars")
        raise DecryptionError("Ciphertext shorter than IV and tag", reason="too_short")

    iv_hex = blob_hex[:IV_LENGTH * 2]
    tag_hex = blob_hex[IV_LENGTH * 2:MIN_BLOB_HEX_LENGTH]
    ciphertext_hex = blob_hex[MIN_BLOB_HEX_LENGTH:]

    if not _HEX_RE.match(iv_hex):
        logger.error("Credential IV segment is not valid hex")
        raise DecryptionError("IV is not valid hex", reason="iv_not_hex")
    if not _HEX_RE.match(tag_hex):
        logger.error("Credential tag segment is not valid hex")
        raise DecryptionError("Authentication tag is not valid hex", reason="tag_not_hex")

    iv = bytes.fromhex(iv_hex)
    tag = bytes.fromhex(tag_hex)

    if len(iv) != IV_LENGTH:
        logger.error(f"Credential IV has {len(iv)} bytes, expected {IV_LENGTH}")
        raise DecryptionError("Invalid IV length", reason="iv_length")
    if len(tag) != TAG_LENGTH:
        logger.error(f"Credential tag has {len(tag)} bytes, expected {TAG_LENGTH}")
        raise DecryptionError("Invalid authentication tag length", reason="tag_length")

    try:
        ciphertext = bytes.fromhex(ciphertext_hex)
    except ValueError as e:
        logger.error("Credential ciphertext segment is not valid hex")
        raise DecryptionError("Ciphertext is not valid hex", reason="ciphertext_not_hex") from e

    return iv, tag, ciphertext


class CredentialVault:
    """
    Encrypts and decrypts platform tokens with AES-256-GCM.

    The key is either 64 hex characters used directly or a passphrase
    stretched with PBKDF2-HMAC-SHA512 using an externally supplied salt.
    """

    def __init__(self, key: Optional[str] = None, salt: Optional[str] = None,
                 aad: Optional[str] = None):
        """
        Initialize the vault.

        Args:
            key: 64 hex chars or a passphrase. If None, loads ENCRYPTION_KEY.
            salt: PBKDF2 salt for passphrase keys. If None, loads ENCRYPTION_KEY_SALT.
            aad: Associated data binding ciphertexts to their purpose.

        Raises:
            ConfigurationError: if no usable key material is configured
        """
        security = get_config().security
        key = key if key is not None else security.encryption_key
        salt = salt if salt is not None else security.encryption_key_salt
        self.aad = (aad if aad is not None else security.encryption_aad).encode("utf-8")

        self._aesgcm = AESGCM(self._load_key(key, salt))

    @staticmethod
    def _load_key(key: Optional[str], salt: Optional[str]) -> bytes:
        if not key:
            raise ConfigurationError(
                "ENCRYPTION_KEY environment variable is required. "
                "Generate one with: python -m menu_sync.scripts.encrypt_existing_tokens --generate-key"
            )

        if len(key) == KEY_LENGTH * 2 and _HEX_RE.match(key):
            logger.debug("Using direct 256-bit encryption key")
            return bytes.fromhex(key)

        if not salt:
            raise ConfigurationError(
                "ENCRYPTION_KEY_SALT is required when ENCRYPTION_KEY is a passphrase"
            )

        logger.debug("Deriving encryption key with PBKDF2-SHA512")
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA512(),
            length=KEY_LENGTH,
            salt=salt.encode("utf-8"),
            iterations=PBKDF2_ITERATIONS,
        )
        return kdf.derive(key.encode("utf-8"))

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt plaintext string.

        Args:
            plaintext: String to encrypt. Empty input yields empty output.

        Returns:
            Hex-encoded ``IV || TAG || CIPHERTEXT``
        """
        if not plaintext:
            return ""

        iv = os.urandom(IV_LENGTH)
        sealed = self._aesgcm.encrypt(iv, plaintext.encode("utf-8"), self.aad)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return (iv + tag + ciphertext).hex()

    def decrypt(self, blob: str) -> str:
        """
        Decrypt a hex or base64 blob.

        Args:
            blob: Stored ciphertext. Empty input yields empty output.

        Returns:
            Decrypted plaintext string

        Raises:
            DecryptionError: on malformed input, unknown encoding or tag mismatch
        """
        if not blob:
            return ""

        iv, tag, ciphertext = split_blob(blob.strip())

        try:
            plaintext = self._aesgcm.decrypt(iv, ciphertext + tag, self.aad)
        except InvalidTag as e:
            logger.error("Credential authentication failed - wrong key or tampered data")
            raise DecryptionError("Authentication tag mismatch", reason="authentication_failed") from e

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptionError("Decrypted credential is not UTF-8", reason="invalid_plaintext") from e

    def is_encrypted(self, value: Optional[str]) -> bool:
        """Return True when ``value`` decrypts successfully with this vault."""
        if value is None:
            return False
        try:
            self.decrypt(value)
        except DecryptionError:
            return False
        return True

    def encrypt_if_needed(self, value: Optional[str]) -> Optional[str]:
        """Encrypt ``value`` unless it is already ciphertext of this vault."""
        if not value or self.is_encrypted(value):
            return value
        return self.encrypt(value)

    @staticmethod
    def generate_key() -> str:
        """
        Generate a new direct encryption key.

        Returns:
            64 hex characters
        """
        return os.urandom(KEY_LENGTH).hex()


# Global vault instance
_vault: Optional[CredentialVault] = None


def get_vault() -> CredentialVault:
    """Get or create global vault instance."""
    global _vault
    if _vault is None:
        _vault = CredentialVault()
    return _vault


def reset_vault() -> None:
    """Drop the cached vault so the next call re-reads configuration."""
    global _vault
    _vault = None


def encrypt_credential(plaintext: str) -> str:
    """Convenience function to encrypt credential."""
    return get_vault().encrypt(plaintext)


def decrypt_credential(blob: str) -> str:
    """Convenience function to decrypt credential."""
    return get_vault().decrypt(blob)


def is_encrypted(value: Optional[str]) -> bool:
    """Convenience function to check whether a value is vault ciphertext."""
    return get_vault().is_encrypted(value)
