"""
Audit record models for the PayStream event log.

This module provides the core data models for the audit log: the record
itself, the filters used to query it and the aggregate statistics computed
over it.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .sanitizer import sanitize


class LogLevel(str, Enum):
    """Severity of an audit record."""

    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    DEBUG = "debug"
    SUCCESS = "success"
    SECURITY = "security"


class LogCategory(str, Enum):
    """Subsystem an audit record originates from."""

    HTTP = "http"
    DATABASE = "database"
    BLOCKCHAIN = "blockchain"
    AUTH = "auth"
    SYSTEM = "system"
    BUSINESS = "business"


SortField = Literal[
    "timestamp",
    "level",
    "category",
    "endpoint",
    "user_address",
    "duration_ms",
    "status_code",
]

SortOrder = Literal["asc", "desc"]


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Interpret naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def normalize_tags(tags: list[str] | None) -> list[str]:
    """Strip tags, drop empties and duplicates, keep first-seen order."""
    seen: dict[str, None] = {}
    for tag in tags or []:
        tag = tag.strip()
        if tag:
            seen.setdefault(tag, None)
    return list(seen)


class ErrorInfo(BaseModel):
    """Error attached to an audit record."""

    type: str
    message: str

    model_config = {"frozen": True}

    @classmethod
    def from_exception(cls, exc: BaseException) -> "ErrorInfo":
        return cls(type=type(exc).__name__, message=str(exc))


class _AuditRecordFields(BaseModel):
    """Fields shared by stored records and records being created."""

    level: LogLevel = Field(..., description="Severity")
    category: LogCategory = Field(..., description="Originating subsystem")
    message: str = Field(..., min_length=1, max_length=2000, description="Human readable message")

    user_address: str | None = Field(None, description="Wallet that triggered the event")
    employer_address: str | None = None
    employee_address: str | None = None
    transaction_hash: str | None = None

    # HTTP origin
    endpoint: str | None = Field(None, description="Route template or path")
    method: str | None = None
    status_code: int | None = None
    request_id: str | None = None
    duration_ms: float | None = Field(None, ge=0)

    details: dict[str, Any] = Field(default_factory=dict, description="Structured context")
    tags: list[str] = Field(default_factory=list, description="Free-form labels")
    error: ErrorInfo | None = None

    @field_validator("message")
    @classmethod
    def validate_message(cls, v: str) -> str:
        """Ensure message is not blank."""
        if not v.strip():
            raise ValueError("message cannot be empty")
        return v.strip()

    @field_validator("user_address", "employer_address", "employee_address")
    @classmethod
    def normalize_address(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return v.strip().lower()

    @field_validator("details", mode="before")
    @classmethod
    def sanitize_details(cls, v: Any) -> Any:
        if v is None:
            return {}
        return sanitize(v)

    @field_validator("tags")
    @classmethod
    def dedupe_tags(cls, v: list[str]) -> list[str]:
        return normalize_tags(v)


class AuditRecordCreate(_AuditRecordFields):
    """
    Model for creating new audit records (without auto-generated fields).

    ``timestamp`` may be supplied for back-filled events; it defaults to the
    time of append.
    """

    timestamp: datetime | None = None

    @field_validator("timestamp")
    @classmethod
    def timestamp_to_utc(cls, v: datetime | None) -> datetime | None:
        return as_utc(v) if v is not None else None


class AuditRecord(_AuditRecordFields):
    """
    Immutable audit record.

    Records are append-only; the retention sweep is the only operation that
    removes them.
    """

    id: UUID = Field(default_factory=uuid4, description="Unique record identifier")
    timestamp: datetime = Field(default_factory=utc_now, description="Event timestamp in UTC")

    model_config = {"frozen": True}

    @field_validator("timestamp")
    @classmethod
    def timestamp_to_utc(cls, v: datetime) -> datetime:
        return as_utc(v)

    @classmethod
    def from_create(cls, record_create: AuditRecordCreate) -> "AuditRecord":
        """Materialize a record, stamping it with the current time if needed."""
        data = record_create.model_dump(exclude={"timestamp"})
        return cls(**data, timestamp=record_create.timestamp or utc_now())


class LogFilter(BaseModel):
    """
    Filter fields for searching audit records. All fields are AND-combined.

    ``tags`` matches records carrying at least one of the given tags;
    ``endpoint`` is a prefix match; ``search`` is a case-insensitive substring
    match over the message and the leaf values of the details (key names are
    not searched). Case folding uses ``str.casefold``, so it covers non-ASCII
    text too.
    """

    model_config = ConfigDict(extra="forbid")

    levels: list[LogLevel] | None = Field(None, description="Filter by levels")
    categories: list[LogCategory] | None = Field(None, description="Filter by categories")
    start_date: datetime | None = Field(None, description="Inclusive start of time range")
    end_date: datetime | None = Field(None, description="Inclusive end of time range")
    user_address: str | None = Field(None, description="Exact wallet match")
    endpoint: str | None = Field(None, description="Endpoint prefix")
    tags: list[str] | None = Field(None, description="Match any of these tags")
    search: str | None = Field(None, max_length=200, description="Free-text search")

    @field_validator("start_date", "end_date")
    @classmethod
    def dates_to_utc(cls, v: datetime | None) -> datetime | None:
        return as_utc(v) if v is not None else None

    @field_validator("user_address", "endpoint", "search")
    @classmethod
    def blank_to_none(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return v.strip()

    @field_validator("user_address")
    @classmethod
    def lowercase_address(cls, v: str | None) -> str | None:
        return v.lower() if v is not None else None

    @field_validator("levels", "categories")
    @classmethod
    def empty_list_to_none(cls, v: list | None) -> list | None:
        return v or None

    @field_validator("tags")
    @classmethod
    def normalize_filter_tags(cls, v: list[str] | None) -> list[str] | None:
        return normalize_tags(v) or None

    @model_validator(mode="after")
    def check_date_range(self) -> "LogFilter":
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self


MAX_QUERY_LIMIT = 500

# Keeps (page - 1) * limit inside SQLite's signed 64-bit OFFSET
MAX_QUERY_PAGE = (2**63 - 1) // MAX_QUERY_LIMIT


class LogQuery(LogFilter):
    """Interactive, paginated query over audit records."""

    page: int = Field(1, ge=1, le=MAX_QUERY_PAGE, description="1-based page number")
    limit: int = Field(50, ge=1, le=MAX_QUERY_LIMIT, description="Records per page")
    sort_by: SortField = Field("timestamp", description="Sort field")
    sort_order: SortOrder = Field("desc", description="Sort direction")

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


class LogExportQuery(LogFilter):
    """Bulk export of audit records, newest first, single page."""

    limit: int = Field(1000, ge=1, le=10000, description="Maximum records to export")


class LogPage(BaseModel):
    """One page of query results."""

    records: list[AuditRecord]
    page: int
    limit: int
    total: int = Field(..., description="Matching records across all pages")
    pages: int


class LogStats(BaseModel):
    """
    Aggregate counts over audit records.
    """

    total: int = Field(..., description="Total number of records")
    by_level: dict[str, int] = Field(default_factory=dict, description="Count by level")
    by_category: dict[str, int] = Field(default_factory=dict, description="Count by category")
    avg_duration_ms: float = Field(0.0, description="Average duration of timed records")
    errors: int = Field(0, description="Number of error-level records")
