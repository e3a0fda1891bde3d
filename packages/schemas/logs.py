"""
Log API response schemas.
"""

from pydantic import BaseModel, Field

from packages.audit_store import AuditRecord, LogStats


class Pagination(BaseModel):
    """Pagination block of a log query."""

    total: int = Field(..., description="Matching records across all pages")
    page: int
    limit: int
    pages: int


class LogQueryResponse(BaseModel):
    """One page of audit records."""

    success: bool = True
    records: list[AuditRecord]
    pagination: Pagination


class LogStatsResponse(BaseModel):
    """Aggregate log statistics."""

    success: bool = True
    stats: LogStats


class LogCleanupResponse(BaseModel):
    """Result of a retention sweep."""

    success: bool = True
    deleted_count: int
    message: str


__all__ = [
    "LogCleanupResponse",
    "LogQueryResponse",
    "LogStatsResponse",
    "Pagination",
]
