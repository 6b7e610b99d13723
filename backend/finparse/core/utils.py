"""
Core utilities for Finparse backend.
"""

from __future__ import annotations

import hashlib
from datetime import datetime, timezone

MAX_ERROR_MESSAGE_LENGTH = 2000


def content_checksum(content: bytes) -> str:
    """Compute the SHA-256 fingerprint used for document deduplication.

    Args:
        content: Raw file bytes

    Returns:
        Lowercase SHA-256 hex digest
    """
    return hashlib.sha256(content).hexdigest()


def truncate_message(message: str, limit: int = MAX_ERROR_MESSAGE_LENGTH) -> str:
    """Cut an error message down to what the record store accepts."""
    if len(message) <= limit:
        return message
    return message[:limit]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
