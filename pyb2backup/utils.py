"""Utility functions for pyb2backup."""

import hashlib
import math
from typing import BinaryIO, Optional

# =============================================================================
# Constants for sync operations
# =============================================================================

# Retry configuration for remote-mutating operations
DEFAULT_MAX_ATTEMPTS: int = 3
DEFAULT_RETRY_DELAY: float = 1.0  # seconds
MAX_RETRY_DELAY: float = 60.0  # seconds

# B2 accepts at most 10000 file names and 1000 parts per listing call
DEFAULT_LIST_PAGE_SIZE: int = 10000
DEFAULT_PART_LIST_PAGE_SIZE: int = 1000

# Fallback part size when the server does not recommend one (100 MB)
DEFAULT_PART_SIZE: int = 100 * 1000 * 1000

# B2 reports this instead of a SHA1 for files uploaded in parts
SENTINEL_HASH: str = "none"

# Prefix B2 puts on hashes it did not verify itself
UNVERIFIED_HASH_PREFIX: str = "unverified:"

# Read size used while staging and hashing
READ_BLOCK_SIZE: int = 1024 * 1024


# =============================================================================
# Size formatting utilities
# =============================================================================


def format_size(size_bytes: int) -> str:
    """Format file size in human-readable format.

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted size string (e.g., "1.5 MB", "256 B")
    """
    if size_bytes < 1024:
        return f"{size_bytes} B"
    elif size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    elif size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / 1024 / 1024:.1f} MB"
    else:
        return f"{size_bytes / 1024 / 1024 / 1024:.1f} GB"


# =============================================================================
# Hash calculation utilities
# =============================================================================


def sha1_bytes(data: bytes) -> str:
    """Return the hex SHA1 digest of a byte string."""
    return hashlib.sha1(data).hexdigest()


def sha1_stream(stream: BinaryIO, block_size: int = READ_BLOCK_SIZE) -> str:
    """Hash a binary stream from its current position to the end.

    Args:
        stream: Readable binary stream
        block_size: Number of bytes read per iteration

    Returns:
        Hex SHA1 digest
    """
    digest = hashlib.sha1()
    while True:
        block = stream.read(block_size)
        if not block:
            break
        digest.update(block)
    return digest.hexdigest()


def normalize_remote_hash(value: Optional[str]) -> str:
    """Normalize a content hash reported by B2 for comparison.

    Strips the ``unverified:`` prefix and lowercases the digest.
    Missing hashes normalize to the sentinel.

    Examples:
        >>> normalize_remote_hash("unverified:ABC")
        'abc'
        >>> normalize_remote_hash(None)
        'none'
    """
    if not value:
        return SENTINEL_HASH
    if value.startswith(UNVERIFIED_HASH_PREFIX):
        value = value[len(UNVERIFIED_HASH_PREFIX) :]
    return value.lower()


# =============================================================================
# Part partitioning utilities
# =============================================================================


def calculate_part_count(size: int, part_size: int) -> int:
    """Number of parts needed to upload ``size`` bytes.

    A zero-byte file still needs one (empty) whole-object upload.

    Examples:
        >>> calculate_part_count(250, 100)
        3
        >>> calculate_part_count(100, 100)
        1
        >>> calculate_part_count(0, 100)
        1
    """
    if part_size <= 0:
        raise ValueError(f"Part size must be positive, got {part_size}")
    return max(1, math.ceil(size / part_size))


def part_range(part_number: int, size: int, part_size: int) -> tuple[int, int]:
    """Inclusive byte range covered by a 1-based part number.

    Examples:
        >>> part_range(1, 250, 100)
        (0, 99)
        >>> part_range(3, 250, 100)
        (200, 249)
    """
    if part_number < 1:
        raise ValueError(f"Part numbers start at 1, got {part_number}")
    start = (part_number - 1) * part_size
    end = min(part_number * part_size, size) - 1
    if start > end:
        raise ValueError(f"Part {part_number} is beyond the end of a {size} byte file")
    return start, end
