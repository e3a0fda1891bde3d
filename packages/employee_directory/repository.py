"""
Employee repository using SQLite.

One row per (employer, wallet) pair, enforced by a unique constraint. Writes
run as ``BEGIN IMMEDIATE`` transactions like the stream repository.
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

from packages.paystream_errors import EmployeeExistsError, EmployeeNotFoundError, StoreError
from packages.stream_registry import normalize_address
from packages.structured_logging import get_logger

from .models import Employee

logger = get_logger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%f+00:00"

# Columns an update may write
_UPDATE_COLUMNS = ("name", "email", "department", "notes", "tags", "last_synced_at")


def _format_ts(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class EmployeeRepository:
    """
    Persistent storage for employee records.

    Addresses are normalized before every lookup and write.
    """

    def __init__(self, db_path: str | Path = "data/employees.db", timeout: float = 10.0):
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

        logger.info("employee_repository_initialized", db_path=str(self.db_path))

    def _init_database(self) -> None:
        """Initialize database schema."""
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS employees (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL UNIQUE,
                    employer_address TEXT NOT NULL,
                    wallet_address TEXT NOT NULL,
                    name TEXT,
                    email TEXT,
                    department TEXT,
                    notes TEXT,
                    tags TEXT NOT NULL DEFAULT '[]',
                    added_at TEXT NOT NULL,
                    last_synced_at TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    UNIQUE (employer_address, wallet_address)
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_employees_wallet
                ON employees(wallet_address)
            """)

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Autocommit connection; driver failures become StoreError."""
        try:
            conn = sqlite3.connect(
                str(self.db_path), timeout=self.timeout, isolation_level=None
            )
        except sqlite3.Error as e:
            logger.error("employee_store_connect_failed", db_path=str(self.db_path), error=str(e))
            raise StoreError("Employee storage unavailable") from e

        conn.row_factory = sqlite3.Row
        try:
            yield conn
        except sqlite3.Error as e:
            logger.error("employee_store_operation_failed", db_path=str(self.db_path), error=str(e))
            raise StoreError("Employee storage operation failed") from e
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
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

    def list_employees(self, employer_address: str) -> list[Employee]:
        """All employees of an employer, most recently added first."""
        with self._get_connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM employees
                WHERE employer_address = ?
                ORDER BY added_at DESC, seq DESC
                """,
                (normalize_address(employer_address),),
            ).fetchall()
            return [self._row_to_employee(row) for row in rows]

    def get(self, employee_id: str) -> Employee | None:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM employees WHERE id = ?", (employee_id,)).fetchone()
            return self._row_to_employee(row) if row else None

    def find(self, employer_address: str, wallet_address: str) -> Employee | None:
        """Employee record of a wallet under an employer, or None."""
        with self._get_connection() as conn:
            return self._select_pair(
                conn, normalize_address(employer_address), normalize_address(wallet_address)
            )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert(self, employee: Employee) -> Employee:
        """
        Insert a new employee record.

        Raises:
            EmployeeExistsError: If the employer already lists the wallet
            StoreError: If the write fails
        """
        employee = employee.model_copy(update={
            "employer_address": normalize_address(employee.employer_address),
            "wallet_address": normalize_address(employee.wallet_address),
        })

        with self._transaction() as conn:
            existing = self._select_pair(conn, employee.employer_address, employee.wallet_address)
            if existing is not None:
                raise EmployeeExistsError("Employee already exists", existing=existing)

            conn.execute(
                """
                INSERT INTO employees
                (id, employer_address, wallet_address, name, email, department,
                 notes, tags, added_at, last_synced_at, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    employee.id,
                    employee.employer_address,
                    employee.wallet_address,
                    employee.name,
                    employee.email,
                    employee.department,
                    employee.notes,
                    json.dumps(employee.tags, ensure_ascii=False),
                    _format_ts(employee.added_at),
                    _format_ts(employee.last_synced_at),
                    _format_ts(employee.created_at),
                    _format_ts(employee.updated_at),
                ),
            )

        return employee

    def update(self, employee_id: str, changes: dict[str, Any]) -> Employee:
        """
        Write the given metadata columns of one record.

        Raises:
            EmployeeNotFoundError: If no record has the id
            StoreError: If the write fails
        """
        unknown = set(changes) - set(_UPDATE_COLUMNS)
        if unknown:
            raise ValueError(f"Unsupported employee columns: {sorted(unknown)}")

        values = dict(changes)
        if "tags" in values:
            values["tags"] = json.dumps(values["tags"] or [], ensure_ascii=False)
        if "last_synced_at" in values:
            values["last_synced_at"] = _format_ts(values["last_synced_at"])
        values["updated_at"] = _format_ts(datetime.now(timezone.utc))

        assignments = ", ".join(f"{column} = ?" for column in values)
        with self._transaction() as conn:
            cursor = conn.execute(
                f"UPDATE employees SET {assignments} WHERE id = ?",
                [*values.values(), employee_id],
            )
            if cursor.rowcount == 0:
                raise EmployeeNotFoundError("Employee not found")
            row = conn.execute("SELECT * FROM employees WHERE id = ?", (employee_id,)).fetchone()

        return self._row_to_employee(row)

    def delete(self, employee_id: str) -> Employee:
        """
        Delete a record by id.

        Returns:
            The deleted record

        Raises:
            EmployeeNotFoundError: If no record has the id
        """
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM employees WHERE id = ?", (employee_id,)).fetchone()
            if row is None:
                raise EmployeeNotFoundError("Employee not found")
            conn.execute("DELETE FROM employees WHERE seq = ?", (row["seq"],))

        return self._row_to_employee(row)

    def delete_by_wallet(self, employer_address: str, wallet_address: str) -> Employee:
        """
        Delete the record of a wallet under an employer.

        Raises:
            EmployeeNotFoundError: If the employer does not list the wallet
        """
        with self._transaction() as conn:
            employee = self._select_pair(
                conn, normalize_address(employer_address), normalize_address(wallet_address)
            )
            if employee is None:
                raise EmployeeNotFoundError("Employee not found")
            conn.execute("DELETE FROM employees WHERE id = ?", (employee.id,))

        return employee

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _select_pair(
        self, conn: sqlite3.Connection, employer_address: str, wallet_address: str
    ) -> Employee | None:
        row = conn.execute(
            "SELECT * FROM employees WHERE employer_address = ? AND wallet_address = ?",
            (employer_address, wallet_address),
        ).fetchone()
        return self._row_to_employee(row) if row else None

    @staticmethod
    def _row_to_employee(row: sqlite3.Row) -> Employee:
        """Convert database row to Employee."""
        return Employee(
            id=row["id"],
            employer_address=row["employer_address"],
            wallet_address=row["wallet_address"],
            name=row["name"],
            email=row["email"],
            department=row["department"],
            notes=row["notes"],
            tags=json.loads(row["tags"]),
            added_at=_parse_ts(row["added_at"]),
            last_synced_at=_parse_ts(row["last_synced_at"]),
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )
