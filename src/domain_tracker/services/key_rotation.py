"""Re-encrypt every stored credential under a new key."""

import logging
from dataclasses import dataclass, field
from typing import Iterable, Protocol

from domain_tracker.models.errors import ConfigurationError, EncryptionError
from domain_tracker.services.credentials import EncryptedRecord
from domain_tracker.services.secret_store import (
    decrypt_secret_with_key,
    encrypt_secret_with_key,
)

MIN_KEY_LENGTH = 16

logger = logging.getLogger("domain_tracker.key_rotation")


class RecordSource(Protocol):
    def iter_encrypted(self) -> Iterable[EncryptedRecord]: ...

    def save(self, record: EncryptedRecord, value: str) -> None: ...


@dataclass
class RotationResult:
    rotated: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def validate_new_key(new_key: str) -> str:
    """Strip and length-check an operator supplied key.

    Raises:
        ConfigurationError: If the key is shorter than 16 characters
    """
    new_key = new_key.strip()
    if len(new_key) < MIN_KEY_LENGTH:
        raise ConfigurationError(
            f"New key should be at least {MIN_KEY_LENGTH} characters."
        )
    return new_key


def rotate_keys(old_key: str, new_key: str, source: RecordSource) -> RotationResult:
    """Move every ciphertext in ``source`` from ``old_key`` to ``new_key``.

    A record that cannot be decrypted is reported and skipped; the batch
    continues. Configuration is not touched: the operator switches APP_KEY
    only after a run with no errors.

    Raises:
        ConfigurationError: If either key is missing or the new key is too short
    """
    if not old_key:
        raise ConfigurationError("APP_KEY is not configured.")
    new_key = validate_new_key(new_key)

    result = RotationResult()
    # Materialize first so saves never interleave with an open cursor
    records = list(source.iter_encrypted())
    logger.info(f"Rotating {len(records)} encrypted value(s)")

    for record in records:
        if record.value == "":
            continue

        plaintext = decrypt_secret_with_key(record.value, old_key)
        if plaintext == "":
            result.errors.append(f"{record.label}: unable to decrypt with current key")
            logger.warning(f"Rotation skipped {record.label}: decrypt failed")
            continue

        try:
            reencrypted = encrypt_secret_with_key(plaintext, new_key)
        except EncryptionError as e:
            result.errors.append(f"{record.label}: {e}")
            logger.error(f"Rotation failed for {record.label}: {e}")
            continue

        source.save(record, reencrypted)
        result.rotated += 1

    logger.info(f"Rotated {result.rotated} value(s), {len(result.errors)} error(s)")
    return result
