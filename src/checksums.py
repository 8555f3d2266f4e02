"""Streaming checksum computation for package payloads and index files."""

import hashlib
import logging
from pathlib import Path
from typing import BinaryIO

from src.errors import IOFailure
from src.models import DigestSet

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


def digest(stream: BinaryIO) -> tuple[DigestSet, int]:
    """Compute MD5, SHA1 and SHA256 of a stream in a single pass.

    The stream is read incrementally in fixed-size chunks so arbitrarily
    large payloads are never held in memory.

    Args:
        stream: Binary file-like object positioned at the start of the payload

    Returns:
        Tuple of the digest set and the number of bytes read

    Raises:
        IOFailure: If reading the stream fails
    """
    md5_hash = hashlib.md5()
    sha1_hash = hashlib.sha1()
    sha256_hash = hashlib.sha256()
    size = 0

    try:
        for chunk in iter(lambda: stream.read(CHUNK_SIZE), b""):
            md5_hash.update(chunk)
            sha1_hash.update(chunk)
            sha256_hash.update(chunk)
            size += len(chunk)
    except OSError as e:
        logger.error(f"Failed to read payload after {size} bytes: {e}")
        raise IOFailure(f"Failed to read payload: {e}") from e

    return (
        DigestSet(
            md5=md5_hash.hexdigest(),
            sha1=sha1_hash.hexdigest(),
            sha256=sha256_hash.hexdigest(),
        ),
        size,
    )


def digest_file(file_path: str | Path) -> tuple[DigestSet, int]:
    """Compute the digest set and size of a local file."""
    try:
        with open(file_path, "rb") as f:
            return digest(f)
    except OSError as e:
        raise IOFailure(f"Failed to open {file_path}: {e}") from e


def digest_bytes(data: bytes) -> DigestSet:
    """Compute the digest set of an in-memory index file."""
    return DigestSet(
        md5=hashlib.md5(data).hexdigest(),
        sha1=hashlib.sha1(data).hexdigest(),
        sha256=hashlib.sha256(data).hexdigest(),
    )
