"""
Log query package: filtered search, export, statistics and retention over the
audit store.
"""

from .engine import (
    DEFAULT_DAYS_TO_KEEP,
    MAX_DAYS_TO_KEEP,
    MIN_DAYS_TO_KEEP,
    LogQueryEngine,
    coerce_query,
)
from .retention import RetentionScheduler

__all__ = [
    "DEFAULT_DAYS_TO_KEEP",
    "LogQueryEngine",
    "MAX_DAYS_TO_KEEP",
    "MIN_DAYS_TO_KEEP",
    "RetentionScheduler",
    "coerce_query",
]
