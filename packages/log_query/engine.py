"""
Log query engine: ingestion helpers, filtered queries, export, statistics and
retention over the audit store.
"""

import math
from datetime import datetime, timedelta
from typing import Any, Iterable, Mapping, TypeVar

from pydantic import BaseModel, ValidationError

from packages.audit_store import (
    AuditRecord,
    AuditRecordCreate,
    AuditSink,
    AuditStore,
    ErrorInfo,
    LogCategory,
    LogExportQuery,
    LogFilter,
    LogLevel,
    LogPage,
    LogQuery,
    LogStats,
    StoreAuditSink,
    level_for_status,
)
from packages.audit_store.models import utc_now
from packages.paystream_errors import QueryValidationError
from packages.structured_logging import get_logger

logger = get_logger(__name__)

MIN_DAYS_TO_KEEP = 1
MAX_DAYS_TO_KEEP = 365
DEFAULT_DAYS_TO_KEEP = 90

QueryT = TypeVar("QueryT", bound=BaseModel)


def _validation_message(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        loc = ".".join(str(part) for part in item.get("loc", ()))
        parts.append(f"{loc}: {item.get('msg')}" if loc else str(item.get("msg")))
    return "; ".join(parts)


def coerce_query(model: type[QueryT], value: QueryT | Mapping[str, Any] | None) -> QueryT:
    """
    Build a filter model from a mapping, rejecting invalid values.

    Raises:
        QueryValidationError: If any field is out of range or malformed
    """
    if isinstance(value, model):
        return value
    try:
        return model.model_validate(dict(value or {}))
    except ValidationError as e:
        raise QueryValidationError(_validation_message(e)) from e


class LogQueryEngine:
    """
    Query and ingestion front end for the audit store.

    Records are written through ``sink`` (synchronous by default); reads go
    straight to the store. The engine itself satisfies the AuditSink protocol
    so it can be injected wherever a sink is expected.
    """

    def __init__(self, store: AuditStore, sink: AuditSink | None = None):
        """
        Initialize engine.

        Args:
            store: Audit store to query
            sink: Sink used for ingestion (defaults to synchronous writes)
        """
        self.store = store
        self.sink = sink or StoreAuditSink(store)

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def emit(self, record: AuditRecordCreate) -> None:
        """Hand a record to the sink. Never raises."""
        try:
            self.sink.emit(record)
        except Exception as e:
            logger.error("audit_emit_failed", message=record.message, error=str(e))

    def log_business(
        self,
        message: str,
        level: LogLevel = LogLevel.INFO,
        employer_address: str | None = None,
        employee_address: str | None = None,
        user_address: str | None = None,
        details: Mapping[str, Any] | None = None,
        tags: Iterable[str] = (),
        error: BaseException | None = None,
    ) -> None:
        """Record a business event (stream lifecycle and payroll actions)."""
        self._log(
            LogCategory.BUSINESS,
            level,
            message,
            employer_address=employer_address,
            employee_address=employee_address,
            user_address=user_address or employer_address,
            details=details,
            tags=tags,
            error=error,
        )

    def log_security(
        self,
        message: str,
        level: LogLevel = LogLevel.WARN,
        user_address: str | None = None,
        details: Mapping[str, Any] | None = None,
        tags: Iterable[str] = ("security",),
    ) -> None:
        """Record an authorization event. ``info`` is stored as ``security``."""
        if level == LogLevel.INFO:
            level = LogLevel.SECURITY
        self._log(
            LogCategory.AUTH,
            level,
            message,
            user_address=user_address,
            details=details,
            tags=tags,
        )

    def log_system(
        self,
        message: str,
        level: LogLevel = LogLevel.INFO,
        details: Mapping[str, Any] | None = None,
        tags: Iterable[str] = (),
        error: BaseException | None = None,
    ) -> None:
        """Record a system event (startup, maintenance, unhandled errors)."""
        self._log(LogCategory.SYSTEM, level, message, details=details, tags=tags, error=error)

    def log_blockchain(
        self,
        message: str,
        level: LogLevel = LogLevel.INFO,
        transaction_hash: str | None = None,
        employer_address: str | None = None,
        employee_address: str | None = None,
        user_address: str | None = None,
        details: Mapping[str, Any] | None = None,
        tags: Iterable[str] = (),
        error: BaseException | None = None,
    ) -> None:
        """Record an on-chain interaction reported by the upstream feed."""
        self._log(
            LogCategory.BLOCKCHAIN,
            level,
            message,
            transaction_hash=transaction_hash,
            employer_address=employer_address,
            employee_address=employee_address,
            user_address=user_address,
            details=details,
            tags=tags,
            error=error,
        )

    def log_database(
        self,
        message: str,
        operation: str,
        collection: str,
        document_id: str | None = None,
        level: LogLevel = LogLevel.INFO,
        user_address: str | None = None,
        details: Mapping[str, Any] | None = None,
        error: BaseException | None = None,
    ) -> None:
        """
        Record a write against one of the backing tables.

        ``operation``, ``collection`` and ``document_id`` are kept in the
        details and ``operation`` is added as a tag next to ``database``.
        """
        self._log(
            LogCategory.DATABASE,
            level,
            message,
            user_address=user_address,
            details={
                **(details or {}),
                "operation": operation,
                "collection": collection,
                "document_id": document_id,
            },
            tags=["database", operation],
            error=error,
        )

    def log_http(
        self,
        method: str,
        endpoint: str,
        status_code: int,
        duration_ms: float | None = None,
        user_address: str | None = None,
        request_id: str | None = None,
        details: Mapping[str, Any] | None = None,
    ) -> None:
        """Record a handled HTTP request; the level follows the status code."""
        self._log(
            LogCategory.HTTP,
            level_for_status(status_code),
            f"{method} {endpoint}",
            method=method,
            endpoint=endpoint,
            status_code=status_code,
            duration_ms=duration_ms,
            user_address=user_address,
            request_id=request_id,
            details=details,
        )

    def _log(
        self,
        category: LogCategory,
        level: LogLevel,
        message: str,
        details: Mapping[str, Any] | None = None,
        tags: Iterable[str] = (),
        error: BaseException | None = None,
        **fields: Any,
    ) -> None:
        try:
            record = AuditRecordCreate(
                level=level,
                category=category,
                message=message,
                details=dict(details or {}),
                tags=list(tags),
                error=ErrorInfo.from_exception(error) if error else None,
                **fields,
            )
        except ValidationError as e:
            logger.error("audit_record_invalid", message=message, error=str(e))
            return
        self.emit(record)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def query(self, query: LogQuery | Mapping[str, Any] | None = None) -> LogPage:
        """
        Run a paginated query.

        Args:
            query: LogQuery or mapping of its fields (page 1, limit 50 by default)

        Returns:
            LogPage with the requested page and the total match count

        Raises:
            QueryValidationError: If the filter or pagination is invalid
            StoreError: If the store cannot be read
        """
        query = coerce_query(LogQuery, query)
        record_filter = LogFilter.model_validate(
            query.model_dump(include=set(LogFilter.model_fields))
        )

        records = self.store.find(
            record_filter,
            offset=query.offset,
            limit=query.limit,
            sort_by=query.sort_by,
            sort_order=query.sort_order,
        )
        total = self.store.count(record_filter)

        return LogPage(
            records=records,
            page=query.page,
            limit=query.limit,
            total=total,
            pages=math.ceil(total / query.limit),
        )

    def export(self, query: LogExportQuery | Mapping[str, Any] | None = None) -> list[AuditRecord]:
        """
        Export matching records, newest first, as a single list.

        Raises:
            QueryValidationError: If the filter or limit is invalid
        """
        query = coerce_query(LogExportQuery, query)
        record_filter = LogFilter.model_validate(
            query.model_dump(include=set(LogFilter.model_fields))
        )
        records = self.store.find(
            record_filter, offset=0, limit=query.limit, sort_by="timestamp", sort_order="desc"
        )
        logger.info("logs_exported", count=len(records), limit=query.limit)
        return records

    def stats(
        self,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> LogStats:
        """
        Aggregate counts by level and category within an optional time range.

        Raises:
            QueryValidationError: If start_date is after end_date
        """
        record_filter = coerce_query(
            LogFilter, {"start_date": start_date, "end_date": end_date}
        )
        return self.store.aggregate(record_filter)

    def cleanup(
        self,
        days_to_keep: int = DEFAULT_DAYS_TO_KEEP,
        now: datetime | None = None,
    ) -> int:
        """
        Delete records older than ``days_to_keep`` days.

        Args:
            days_to_keep: Retention window, 1-365 days
            now: Reference time (defaults to current UTC time)

        Returns:
            Number of deleted records

        Raises:
            QueryValidationError: If days_to_keep is out of range
            StoreError: If the deletion fails
        """
        if isinstance(days_to_keep, bool) or not isinstance(days_to_keep, int):
            raise QueryValidationError("days_to_keep must be an integer")
        if not MIN_DAYS_TO_KEEP <= days_to_keep <= MAX_DAYS_TO_KEEP:
            raise QueryValidationError(
                f"days_to_keep must be between {MIN_DAYS_TO_KEEP} and {MAX_DAYS_TO_KEEP}"
            )

        cutoff = (now or utc_now()) - timedelta(days=days_to_keep)
        deleted_count = self.store.delete_older_than(cutoff)

        logger.info(
            "logs_cleaned_up",
            deleted_count=deleted_count,
            days_to_keep=days_to_keep,
            cutoff=cutoff.isoformat(),
        )
        self.log_system(
            "Log cleanup completed",
            details={"deleted_count": deleted_count, "days_to_keep": days_to_keep},
            tags=["cleanup", "maintenance"],
        )
        return deleted_count
