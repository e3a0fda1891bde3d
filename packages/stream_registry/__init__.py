"""
Stream registry package: salary stream models and their SQLite repository.
"""

from .models import (
    ADDRESS_PATTERN,
    MAX_STORED_INT,
    OPEN_STATUSES,
    Stream,
    StreamPatch,
    StreamStatus,
    StreamTerms,
    is_valid_address,
    normalize_address,
    parse_amount,
    status_for_paused,
)
from .repository import DuplicateActiveStreamError, StreamRepository

__all__ = [
    "ADDRESS_PATTERN",
    "DuplicateActiveStreamError",
    "MAX_STORED_INT",
    "OPEN_STATUSES",
    "Stream",
    "StreamPatch",
    "StreamRepository",
    "StreamStatus",
    "StreamTerms",
    "is_valid_address",
    "normalize_address",
    "parse_amount",
    "status_for_paused",
]
