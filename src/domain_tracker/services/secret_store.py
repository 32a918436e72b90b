"""AES-256-GCM encryption for stored database credentials.

Encoded form: base64(nonce[12] || tag[16] || ciphertext).

The empty string is the "no secret" value in both directions. Decryption
failures (wrong key, corrupted or truncated input) resolve to ``""`` so a
broken credential degrades to "no password shown" instead of an exception.
"""

import base64
import binascii
import hashlib
import logging
import secrets

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from domain_tracker.models.errors import ConfigurationError, EncryptionError
from domain_tracker.models.settings import Settings

NONCE_SIZE = 12
TAG_SIZE = 16
KEY_SIZE = 32

logger = logging.getLogger("domain_tracker.secret_store")


def derive_key(key_material: str) -> bytes:
    """Hash operator key material down to a 256-bit cipher key.

    Raises:
        ConfigurationError: If the key material is empty
    """
    if not key_material:
        raise ConfigurationError("APP_KEY is not configured.")
    return hashlib.sha256(key_material.encode("utf-8")).digest()


def encrypt_secret_with_key(plaintext: str, key_material: str) -> str:
    """Encrypt ``plaintext`` under ``key_material``.

    Raises:
        ConfigurationError: If the key material is empty
        EncryptionError: If the cipher fails or returns no tag
    """
    if plaintext == "":
        return ""

    key = derive_key(key_material)
    nonce = secrets.token_bytes(NONCE_SIZE)
    try:
        # AESGCM appends the tag to the ciphertext
        sealed = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)
    except Exception as e:
        logger.error(f"Encryption failed: {e}")
        raise EncryptionError("Encryption failed.") from e

    if len(sealed) < TAG_SIZE:
        raise EncryptionError("Encryption failed.")

    ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
    return base64.b64encode(nonce + tag + ciphertext).decode("ascii")


def decrypt_secret_with_key(encoded: str, key_material: str) -> str:
    """Decrypt a value produced by :func:`encrypt_secret_with_key`.

    Returns ``""`` for empty, malformed, truncated or wrong-key input.

    Raises:
        ConfigurationError: If the key material is empty
    """
    if encoded == "":
        return ""

    key = derive_key(key_material)
    try:
        data = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError):
        logger.debug("Rejected secret: invalid base64")
        return ""

    if len(data) < NONCE_SIZE + TAG_SIZE:
        logger.debug(f"Rejected secret: {len(data)} bytes is shorter than nonce+tag")
        return ""

    nonce = data[:NONCE_SIZE]
    tag = data[NONCE_SIZE:NONCE_SIZE + TAG_SIZE]
    ciphertext = data[NONCE_SIZE + TAG_SIZE:]

    try:
        plaintext = AESGCM(key).decrypt(nonce, ciphertext + tag, None)
        return plaintext.decode("utf-8")
    except (InvalidTag, UnicodeDecodeError):
        logger.debug("Rejected secret: authentication failed")
        return ""


class SecretStore:
    """Secret store bound to the configured ``APP_KEY``."""

    def __init__(self, settings: Settings):
        """Initialize secret store.

        Args:
            settings: Application settings providing ``app_key``
        """
        self.settings = settings

    def encrypt(self, plaintext: str) -> str:
        return encrypt_secret_with_key(plaintext, self.settings.app_key)

    def decrypt(self, encoded: str) -> str:
        return decrypt_secret_with_key(encoded, self.settings.app_key)

    def reencrypt_if_changed(self, current: str, new_plaintext: str) -> str:
        """Value to persist when a credential form is saved.

        An empty submission keeps the stored ciphertext untouched.
        """
        if new_plaintext == "":
            return current
        return self.encrypt(new_plaintext)
