"""Streaming content hashes and the checksum comparison policy."""

import hashlib
import logging
from enum import StrEnum
from pathlib import Path

from hostdb.exceptions import ChecksumMismatch
from hostdb.models import HashAlgorithm

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


class Verification(StrEnum):
    """Result of a checksum check that did not fail."""

    VERIFIED = "verified"
    UNVERIFIED = "unverified"


def calculate_hash(
    file_path: str | Path, algorithm: HashAlgorithm = HashAlgorithm.SHA256
) -> str:
    """Calculate a file's hash without loading it into memory.

    Args:
        file_path: Path to the file
        algorithm: Hash algorithm to apply

    Returns:
        Hex digest of the file contents
    """
    digest = hashlib.new(algorithm.hashlib_name)
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def verify_checksum(
    file_path: str | Path,
    expected: str | None,
    algorithm: HashAlgorithm = HashAlgorithm.SHA256,
    label: str | None = None,
) -> Verification:
    """Compare a file's hash against the recorded checksum.

    A missing expected value is not an error: the computed hash is logged so it
    can be recorded in sources.json.

    Args:
        file_path: File to hash
        expected: Recorded hex digest, or None
        algorithm: Hash algorithm the digest was made with
        label: Name used in log lines and errors (defaults to the file name)

    Returns:
        Verification.VERIFIED or Verification.UNVERIFIED

    Raises:
        ChecksumMismatch: If the digest differs from the expected value
    """
    label = label or Path(file_path).name
    actual = calculate_hash(file_path, algorithm)
    logger.info(f"{algorithm.value.upper()} of {label}: {actual}")

    if not expected:
        logger.warning(
            f"No checksum recorded for {label} - update sources.json with the "
            f"{algorithm.value.upper()} above"
        )
        return Verification.UNVERIFIED

    if actual.lower() != expected.lower():
        logger.error(f"Checksum mismatch for {label}! Expected: {expected}")
        raise ChecksumMismatch(label, expected, actual)

    logger.info(f"Checksum verified for {label}")
    return Verification.VERIFIED
