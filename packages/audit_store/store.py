"""
Audit store implementation using SQLite.

This module provides append-only storage for audit records with indexed
filtering, pagination, aggregation and age-based deletion.
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator

from packages.paystream_errors import StoreError
from packages.structured_logging import get_logger

from .models import (
    AuditRecord,
    AuditRecordCreate,
    ErrorInfo,
    LogFilter,
    LogStats,
    as_utc,
    utc_now,
)

logger = get_logger(__name__)

# Fixed-width UTC format so that text comparison matches time order
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%f+00:00"

SORT_COLUMNS = {
    "timestamp": "timestamp",
    "level": "level",
    "category": "category",
    "endpoint": "endpoint",
    "user_address": "user_address",
    "duration_ms": "duration_ms",
    "status_code": "status_code",
}


def format_timestamp(value: datetime) -> str:
    """Serialize a datetime for storage and range comparison."""
    return as_utc(value).strftime(TIMESTAMP_FORMAT)


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _leaf_values(value: Any) -> Iterator[str]:
    if isinstance(value, dict):
        for item in value.values():
            yield from _leaf_values(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from _leaf_values(item)
    elif value is not None:
        yield str(value)


def search_text(message: str, details: dict[str, Any]) -> str:
    """Casefolded message and detail values, one per line, for free-text search."""
    return "\n".join([message, *_leaf_values(details)]).casefold()


class AuditStore:
    """
    Append-only audit record store with SQLite backend.

    Every operation opens its own connection, so one store can be shared by
    request handlers and background audit workers. Records are never updated;
    ``delete_older_than`` is the only destructive operation.
    """

    def __init__(self, db_path: str | Path = "audit.db", timeout: float = 10.0) -> None:
        """
        Initialize audit store.

        Args:
            db_path: Path to SQLite database file
            timeout: Seconds to wait for a locked database
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.timeout = timeout
        self._init_db()

    def _init_db(self) -> None:
        """Create database schema if it doesn't exist."""
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS audit_records (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL UNIQUE,
                    timestamp TEXT NOT NULL,
                    level TEXT NOT NULL,
                    category TEXT NOT NULL,
                    message TEXT NOT NULL,
                    user_address TEXT,
                    employer_address TEXT,
                    employee_address TEXT,
                    transaction_hash TEXT,
                    endpoint TEXT,
                    method TEXT,
                    status_code INTEGER,
                    request_id TEXT,
                    duration_ms REAL,
                    details TEXT NOT NULL,
                    search_text TEXT NOT NULL DEFAULT '',
                    tags TEXT NOT NULL,
                    error TEXT,
                    created_at TEXT NOT NULL
                )
            """)
            self._add_search_text_column(conn)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS audit_record_tags (
                    record_seq INTEGER NOT NULL,
                    tag TEXT NOT NULL,
                    PRIMARY KEY (record_seq, tag)
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_audit_timestamp
                ON audit_records(timestamp DESC)
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_audit_category_level
                ON audit_records(category, level, timestamp DESC)
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_audit_user_address
                ON audit_records(user_address, timestamp DESC)
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_audit_endpoint
                ON audit_records(endpoint, timestamp DESC)
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_audit_tag
                ON audit_record_tags(tag)
            """)

            conn.commit()

    def _add_search_text_column(self, conn: sqlite3.Connection) -> None:
        """Add and backfill ``search_text`` on databases created without it."""
        columns = {row["name"] for row in conn.execute("PRAGMA table_info(audit_records)")}
        if "search_text" in columns:
            return

        conn.execute(
            "ALTER TABLE audit_records ADD COLUMN search_text TEXT NOT NULL DEFAULT ''"
        )
        rows = conn.execute("SELECT seq, message, details FROM audit_records").fetchall()
        conn.executemany(
            "UPDATE audit_records SET search_text = ? WHERE seq = ?",
            [
                (search_text(row["message"], json.loads(row["details"])), row["seq"])
                for row in rows
            ],
        )
        logger.info("audit_search_text_backfilled", records=len(rows))

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Get database connection, wrapping driver failures in StoreError."""
        try:
            conn = sqlite3.connect(str(self.db_path), timeout=self.timeout)
        except sqlite3.Error as e:
            logger.error("audit_store_connect_failed", db_path=str(self.db_path), error=str(e))
            raise StoreError("Audit storage unavailable") from e

        conn.row_factory = sqlite3.Row
        try:
            yield conn
        except sqlite3.Error as e:
            conn.rollback()
            logger.error("audit_store_operation_failed", db_path=str(self.db_path), error=str(e))
            raise StoreError("Audit storage operation failed") from e
        finally:
            conn.close()

    def append(self, record_create: AuditRecordCreate) -> AuditRecord:
        """
        Append a new audit record to the store.

        Args:
            record_create: Record data to append

        Returns:
            The stored record with generated ID and timestamp

        Raises:
            StoreError: If the record cannot be persisted
        """
        record = AuditRecord.from_create(record_create)

        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO audit_records
                (id, timestamp, level, category, message, user_address,
                 employer_address, employee_address, transaction_hash, endpoint,
                 method, status_code, request_id, duration_ms, details, search_text,
                 tags, error, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(record.id),
                    format_timestamp(record.timestamp),
                    record.level.value,
                    record.category.value,
                    record.message,
                    record.user_address,
                    record.employer_address,
                    record.employee_address,
                    record.transaction_hash,
                    record.endpoint,
                    record.method,
                    record.status_code,
                    record.request_id,
                    record.duration_ms,
                    json.dumps(record.details, sort_keys=True, ensure_ascii=False),
                    search_text(record.message, record.details),
                    json.dumps(record.tags),
                    record.error.model_dump_json() if record.error else None,
                    format_timestamp(utc_now()),
                ),
            )
            conn.executemany(
                "INSERT INTO audit_record_tags (record_seq, tag) VALUES (?, ?)",
                [(cursor.lastrowid, tag) for tag in record.tags],
            )
            conn.commit()

        return record

    def get(self, record_id: str) -> AuditRecord | None:
        """
        Retrieve a specific record by ID.

        Args:
            record_id: UUID of the record

        Returns:
            The record if found, None otherwise
        """
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM audit_records WHERE id = ?", (str(record_id),)
            ).fetchone()

            if not row:
                return None

            return self._row_to_record(row)

    def find(
        self,
        record_filter: LogFilter,
        offset: int = 0,
        limit: int = 50,
        sort_by: str = "timestamp",
        sort_order: str = "desc",
    ) -> list[AuditRecord]:
        """
        Find records matching a filter.

        Args:
            record_filter: Filter fields
            offset: Number of matching records to skip
            limit: Maximum records to return
            sort_by: Column to sort by (see SORT_COLUMNS)
            sort_order: "asc" or "desc"

        Returns:
            Matching records; ties on the sort column keep insertion order
        """
        column = SORT_COLUMNS.get(sort_by)
        if column is None:
            raise ValueError(f"Unsupported sort field: {sort_by}")
        direction = "ASC" if sort_order == "asc" else "DESC"

        where_clause, params = self._build_where(record_filter)
        sql = f"""
            SELECT * FROM audit_records
            {where_clause}
            ORDER BY {column} {direction}, seq ASC
            LIMIT ? OFFSET ?
        """

        with self._get_connection() as conn:
            rows = conn.execute(sql, [*params, limit, offset]).fetchall()
            return [self._row_to_record(row) for row in rows]

    def count(self, record_filter: LogFilter) -> int:
        """Count records matching a filter."""
        where_clause, params = self._build_where(record_filter)
        with self._get_connection() as conn:
            return conn.execute(
                f"SELECT COUNT(*) FROM audit_records {where_clause}", params
            ).fetchone()[0]

    def aggregate(self, record_filter: LogFilter) -> LogStats:
        """
        Compute statistics over records matching a filter.

        Returns:
            Counts by level and category, average duration and error count
        """
        where_clause, params = self._build_where(record_filter)

        with self._get_connection() as conn:
            totals = conn.execute(
                f"""
                SELECT
                    COUNT(*) AS total,
                    AVG(duration_ms) AS avg_duration,
                    SUM(CASE WHEN level = 'error' THEN 1 ELSE 0 END) AS errors
                FROM audit_records {where_clause}
                """,
                params,
            ).fetchone()

            level_rows = conn.execute(
                f"""
                SELECT level, COUNT(*) AS count
                FROM audit_records {where_clause}
                GROUP BY level
                """,
                params,
            ).fetchall()

            category_rows = conn.execute(
                f"""
                SELECT category, COUNT(*) AS count
                FROM audit_records {where_clause}
                GROUP BY category
                """,
                params,
            ).fetchall()

        return LogStats(
            total=totals["total"],
            by_level={row["level"]: row["count"] for row in level_rows},
            by_category={row["category"]: row["count"] for row in category_rows},
            avg_duration_ms=totals["avg_duration"] or 0.0,
            errors=totals["errors"] or 0,
        )

    def delete_older_than(self, cutoff: datetime) -> int:
        """
        Delete records with a timestamp strictly before ``cutoff``.

        Returns:
            Number of deleted records
        """
        cutoff_text = format_timestamp(cutoff)

        with self._get_connection() as conn:
            conn.execute(
                """
                DELETE FROM audit_record_tags WHERE record_seq IN (
                    SELECT seq FROM audit_records WHERE timestamp < ?
                )
                """,
                (cutoff_text,),
            )
            deleted = conn.execute(
                "DELETE FROM audit_records WHERE timestamp < ?", (cutoff_text,)
            ).rowcount
            conn.commit()

        return deleted

    def _build_where(self, record_filter: LogFilter) -> tuple[str, list[Any]]:
        """Translate a filter into a WHERE clause and its parameters."""
        conditions = []
        params: list[Any] = []

        if record_filter.levels:
            placeholders = ",".join("?" * len(record_filter.levels))
            conditions.append(f"level IN ({placeholders})")
            params.extend(level.value for level in record_filter.levels)

        if record_filter.categories:
            placeholders = ",".join("?" * len(record_filter.categories))
            conditions.append(f"category IN ({placeholders})")
            params.extend(category.value for category in record_filter.categories)

        if record_filter.start_date:
            conditions.append("timestamp >= ?")
            params.append(format_timestamp(record_filter.start_date))

        if record_filter.end_date:
            conditions.append("timestamp <= ?")
            params.append(format_timestamp(record_filter.end_date))

        if record_filter.user_address:
            conditions.append("user_address = ?")
            params.append(record_filter.user_address)

        if record_filter.endpoint:
            conditions.append("substr(endpoint, 1, ?) = ?")
            params.extend([len(record_filter.endpoint), record_filter.endpoint])

        if record_filter.tags:
            placeholders = ",".join("?" * len(record_filter.tags))
            conditions.append(
                f"seq IN (SELECT record_seq FROM audit_record_tags WHERE tag IN ({placeholders}))"
            )
            params.extend(record_filter.tags)

        if record_filter.search:
            conditions.append("search_text LIKE ? ESCAPE '\\'")
            params.append(f"%{_escape_like(record_filter.search.casefold())}%")

        where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        return where_clause, params

    def _row_to_record(self, row: sqlite3.Row) -> AuditRecord:
        """Convert database row to AuditRecord model."""
        error = json.loads(row["error"]) if row["error"] else None
        return AuditRecord(
            id=row["id"],
            timestamp=datetime.fromisoformat(row["timestamp"]),
            level=row["level"],
            category=row["category"],
            message=row["message"],
            user_address=row["user_address"],
            employer_address=row["employer_address"],
            employee_address=row["employee_address"],
            transaction_hash=row["transaction_hash"],
            endpoint=row["endpoint"],
            method=row["method"],
            status_code=row["status_code"],
            request_id=row["request_id"],
            duration_ms=row["duration_ms"],
            details=json.loads(row["details"]),
            tags=json.loads(row["tags"]),
            error=ErrorInfo(**error) if error else None,
        )
