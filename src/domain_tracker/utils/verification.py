"""SHA-256 content comparison for update diffs."""

import hashlib
from pathlib import Path
import logging


def compute_sha256(file_path: Path, chunk_size: int = 65536) -> str:
    """Compute SHA-256 hash of a file.

    Args:
        file_path: Path to file to hash
        chunk_size: Read buffer size (default 64KB)

    Returns:
        64-character hex SHA-256 hash string

    Raises:
        FileNotFoundError: If file doesn't exist
        IOError: If file read fails
    """
    logger = logging.getLogger("domain_tracker.verification")
    sha = hashlib.sha256()

    try:
        with open(file_path, "rb") as f:
            while chunk := f.read(chunk_size):
                sha.update(chunk)
    except FileNotFoundError:
        logger.error(f"File not found: {file_path}")
        raise
    except IOError as e:
        logger.error(f"Failed to read file {file_path}: {e}")
        raise

    return sha.hexdigest()


def files_differ(left: Path, right: Path) -> bool:
    """True when the two files' contents differ.

    Only content is compared; mtime and permissions are ignored.
    """
    return compute_sha256(left) != compute_sha256(right)
