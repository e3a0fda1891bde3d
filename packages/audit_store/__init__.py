"""
Audit store package for structured event capture.

This package provides an append-only audit log for HTTP, business, security
and system events, with indexed queries, aggregation and age-based retention.
"""

from .middleware import (
    RequestAuditMiddleware,
    RequestIdMiddleware,
    level_for_status,
)
from .models import (
    AuditRecord,
    AuditRecordCreate,
    ErrorInfo,
    LogCategory,
    LogExportQuery,
    LogFilter,
    LogLevel,
    LogPage,
    LogQuery,
    LogStats,
)
from .sanitizer import sanitize
from .sink import AuditSink, BackgroundAuditSink, NullAuditSink, StoreAuditSink
from .store import AuditStore

__all__ = [
    "AuditRecord",
    "AuditRecordCreate",
    "AuditSink",
    "AuditStore",
    "BackgroundAuditSink",
    "ErrorInfo",
    "LogCategory",
    "LogExportQuery",
    "LogFilter",
    "LogLevel",
    "LogPage",
    "LogQuery",
    "LogStats",
    "NullAuditSink",
    "RequestAuditMiddleware",
    "RequestIdMiddleware",
    "StoreAuditSink",
    "level_for_status",
    "sanitize",
]
