"""
Stream repository using SQLite.

Persists stream records and enforces the single-open-stream rule with a
partial unique index. Mutations run as one ``BEGIN IMMEDIATE`` transaction so
that concurrent pause/resume/cancel/sync calls on a pair serialize on the
database write lock.
"""

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Iterator

from packages.paystream_errors import (
    StoreError,
    StreamConflictError,
    StreamNotFoundError,
    StreamTerminalError,
)
from packages.structured_logging import get_logger

from .models import (
    OPEN_STATUSES,
    Stream,
    StreamPatch,
    StreamStatus,
    normalize_address,
    parse_amount,
)

logger = get_logger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%f+00:00"

_OPEN_SQL = "status IN ({})".format(",".join(f"'{s.value}'" for s in OPEN_STATUSES))

# Columns a patch may write; NOT NULL columns ignore explicit None
_PATCH_COLUMNS = {
    "paused": False,
    "status": False,
    "withdrawn": False,
    "cancellation_tx_hash": True,
    "last_synced_at": True,
}


def _format_ts(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class DuplicateActiveStreamError(StreamConflictError):
    """Raised by insert when the pair already has an open stream."""

    def __init__(self, existing: Stream):
        super().__init__("Active stream already exists for this employee", existing=existing)


class StreamRepository:
    """
    Persistent storage for salary streams.

    Addresses are normalized here, before every lookup and write. "Open" means
    status active or paused; mutating lookups are always scoped to open rows
    so that a cancelled stream is never resurrected.
    """

    def __init__(self, db_path: str | Path = "data/streams.db", timeout: float = 10.0):
        """
        Initialize repository.

        Args:
            db_path: Path to SQLite database file
            timeout: Seconds to wait for the database write lock
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.timeout = timeout

        self._init_database()

        logger.info("stream_repository_initialized", db_path=str(self.db_path))

    def _init_database(self) -> None:
        """Initialize database schema."""
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS streams (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL UNIQUE,
                    employer_address TEXT NOT NULL,
                    employee_address TEXT NOT NULL,
                    monthly_salary TEXT NOT NULL,
                    rate_per_second TEXT NOT NULL,
                    duration_months INTEGER NOT NULL,
                    tax_percent INTEGER NOT NULL,
                    start_time INTEGER NOT NULL,
                    end_time INTEGER NOT NULL,
                    withdrawn TEXT NOT NULL DEFAULT '0',
                    paused INTEGER NOT NULL DEFAULT 0,
                    status TEXT NOT NULL
                        CHECK (status IN ('active', 'paused', 'cancelled')),
                    creation_tx_hash TEXT,
                    cancellation_tx_hash TEXT,
                    notes TEXT,
                    last_synced_at TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    CHECK (status = 'cancelled' OR (status = 'paused') = (paused = 1))
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_streams_pair_status
                ON streams(employer_address, employee_address, status)
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_streams_status
                ON streams(status)
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_streams_creation_tx
                ON streams(creation_tx_hash)
            """)
            conn.execute(f"""
                CREATE UNIQUE INDEX IF NOT EXISTS ux_streams_open_pair
                ON streams(employer_address, employee_address)
                WHERE {_OPEN_SQL}
            """)

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Autocommit connection; driver failures become StoreError."""
        try:
            conn = sqlite3.connect(
                str(self.db_path), timeout=self.timeout, isolation_level=None
            )
        except sqlite3.Error as e:
            logger.error("stream_store_connect_failed", db_path=str(self.db_path), error=str(e))
            raise StoreError("Stream storage unavailable") from e

        conn.row_factory = sqlite3.Row
        try:
            yield conn
        except sqlite3.Error as e:
            logger.error("stream_store_operation_failed", db_path=str(self.db_path), error=str(e))
            raise StoreError("Stream storage operation failed") from e
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Write transaction holding the database write lock until commit."""
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find_open_stream(self, employer_address: str, employee_address: str) -> Stream | None:
        """
        Get the open stream for a pair.

        Returns:
            The active or paused stream, or None
        """
        with self._get_connection() as conn:
            return self._select_open(
                conn, normalize_address(employer_address), normalize_address(employee_address)
            )

    def find_streams(
        self,
        employer_address: str,
        status: StreamStatus | None = None,
    ) -> list[Stream]:
        """
        Get all streams of an employer, newest first.

        Args:
            employer_address: Employer wallet
            status: Optional status filter

        Returns:
            Streams ordered by created_at descending
        """
        sql = "SELECT * FROM streams WHERE employer_address = ?"
        params: list = [normalize_address(employer_address)]
        if status is not None:
            sql += " AND status = ?"
            params.append(StreamStatus(status).value)
        sql += " ORDER BY created_at DESC, seq DESC"

        with self._get_connection() as conn:
            rows = conn.execute(sql, params).fetchall()
            return [self._row_to_stream(row) for row in rows]

    def get_stream(self, stream_id: str) -> Stream | None:
        """Get a stream by ID regardless of status."""
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM streams WHERE id = ?", (stream_id,)).fetchone()
            return self._row_to_stream(row) if row else None

    def count_open_streams(self, employer_address: str, employee_address: str) -> int:
        """Number of open streams for a pair (0 or 1)."""
        with self._get_connection() as conn:
            return conn.execute(
                f"""
                SELECT COUNT(*) FROM streams
                WHERE employer_address = ? AND employee_address = ? AND {_OPEN_SQL}
                """,
                (normalize_address(employer_address), normalize_address(employee_address)),
            ).fetchone()[0]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert(self, stream: Stream) -> Stream:
        """
        Insert a new stream.

        Args:
            stream: Stream to store

        Returns:
            The stored stream (addresses normalized)

        Raises:
            DuplicateActiveStreamError: If the pair already has an open stream
            StoreError: If the write fails
        """
        stream = stream.model_copy(update={
            "employer_address": normalize_address(stream.employer_address),
            "employee_address": normalize_address(stream.employee_address),
        })

        with self._transaction() as conn:
            if stream.is_open:
                existing = self._select_open(conn, stream.employer_address, stream.employee_address)
                if existing is not None:
                    raise DuplicateActiveStreamError(existing)

            try:
                conn.execute(
                    """
                    INSERT INTO streams
                    (id, employer_address, employee_address, monthly_salary,
                     rate_per_second, duration_months, tax_percent, start_time,
                     end_time, withdrawn, paused, status, creation_tx_hash,
                     cancellation_tx_hash, notes, last_synced_at, created_at,
                     updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        stream.id,
                        stream.employer_address,
                        stream.employee_address,
                        stream.monthly_salary,
                        stream.rate_per_second,
                        stream.duration_months,
                        stream.tax_percent,
                        stream.start_time,
                        stream.end_time,
                        stream.withdrawn,
                        int(stream.paused),
                        stream.status.value,
                        stream.creation_tx_hash,
                        stream.cancellation_tx_hash,
                        stream.notes,
                        _format_ts(stream.last_synced_at),
                        _format_ts(stream.created_at),
                        _format_ts(stream.updated_at),
                    ),
                )
            except sqlite3.IntegrityError:
                existing = self._select_open(conn, stream.employer_address, stream.employee_address)
                if existing is None:
                    raise
                raise DuplicateActiveStreamError(existing)

        logger.info(
            "stream_inserted",
            stream_id=stream.id,
            employer_address=stream.employer_address,
            employee_address=stream.employee_address,
        )
        return stream

    def update_open_stream(
        self,
        employer_address: str,
        employee_address: str,
        patch: StreamPatch,
    ) -> Stream:
        """
        Apply a partial update to the open stream of a pair, atomically.

        ``withdrawn`` never decreases: a smaller observed value leaves the
        stored one in place. The UPDATE repeats the open-state predicate, so a
        row that stopped being open after the lookup fails with
        StreamTerminalError instead of being overwritten.

        Returns:
            The updated stream

        Raises:
            StreamNotFoundError: If the pair has no open stream
            StreamTerminalError: If the matched stream was cancelled before the write
            StoreError: If the write fails
        """
        employer_address = normalize_address(employer_address)
        employee_address = normalize_address(employee_address)
        changes = {
            column: value
            for column, value in patch.changes().items()
            if value is not None or _PATCH_COLUMNS[column]
        }

        with self._transaction() as conn:
            current = self._select_open(conn, employer_address, employee_address)
            if current is None:
                raise StreamNotFoundError("Stream not found")

            if "withdrawn" in changes:
                observed = parse_amount(changes["withdrawn"])
                stored = parse_amount(current.withdrawn) or Decimal(0)
                if observed is None or observed < stored:
                    logger.warning(
                        "stale_withdrawn_ignored",
                        stream_id=current.id,
                        stored=current.withdrawn,
                        observed=changes["withdrawn"],
                    )
                    del changes["withdrawn"]

            changes["updated_at"] = datetime.now(timezone.utc)
            assignments = ", ".join(f"{column} = ?" for column in changes)
            cursor = conn.execute(
                f"UPDATE streams SET {assignments} WHERE id = ? AND status != 'cancelled'",
                [*(self._to_column(v) for v in changes.values()), current.id],
            )
            if cursor.rowcount == 0:
                raise StreamTerminalError("Stream is cancelled")

            row = conn.execute("SELECT * FROM streams WHERE id = ?", (current.id,)).fetchone()

        return self._row_to_stream(row)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _select_open(
        self, conn: sqlite3.Connection, employer_address: str, employee_address: str
    ) -> Stream | None:
        row = conn.execute(
            f"""
            SELECT * FROM streams
            WHERE employer_address = ? AND employee_address = ? AND {_OPEN_SQL}
            """,
            (employer_address, employee_address),
        ).fetchone()
        return self._row_to_stream(row) if row else None

    @staticmethod
    def _to_column(value):
        if isinstance(value, StreamStatus):
            return value.value
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, datetime):
            return _format_ts(value)
        return value

    @staticmethod
    def _row_to_stream(row: sqlite3.Row) -> Stream:
        """Convert database row to Stream."""
        return Stream(
            id=row["id"],
            employer_address=row["employer_address"],
            employee_address=row["employee_address"],
            monthly_salary=row["monthly_salary"],
            rate_per_second=row["rate_per_second"],
            duration_months=row["duration_months"],
            tax_percent=row["tax_percent"],
            start_time=row["start_time"],
            end_time=row["end_time"],
            withdrawn=row["withdrawn"],
            paused=bool(row["paused"]),
            status=StreamStatus(row["status"]),
            creation_tx_hash=row["creation_tx_hash"],
            cancellation_tx_hash=row["cancellation_tx_hash"],
            notes=row["notes"],
            last_synced_at=_parse_ts(row["last_synced_at"]),
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )
