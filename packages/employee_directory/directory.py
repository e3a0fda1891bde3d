"""
Employee directory service.

Adds, edits and removes employee records and reports each change to the audit
log: a ``business`` record for what the employer did and a ``database``
record for the write that carried it out.
"""

from datetime import datetime, timezone
from typing import Callable, Iterable

from packages.audit_store import LogLevel
from packages.log_query import LogQueryEngine
from packages.paystream_errors import EmployeeExistsError, EmployeeNotFoundError, StoreError
from packages.stream_registry import is_valid_address, normalize_address
from packages.structured_logging import get_logger

from .models import BulkAddResult, BulkEntryError, Employee, EmployeeEntry, EmployeeProfile
from .repository import EmployeeRepository

logger = get_logger(__name__)

COLLECTION = "employees"


class EmployeeDirectory:
    """
    Employee records of employers.

    Audit records go through the log engine's ingestion helpers, which never
    raise; without an engine the directory only logs locally.
    """

    def __init__(
        self,
        repository: EmployeeRepository,
        log_engine: LogQueryEngine | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.repository = repository
        self.log_engine = log_engine
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def list_employees(self, employer_address: str) -> list[Employee]:
        return self.repository.list_employees(employer_address)

    def get_employee(self, employee_id: str) -> Employee:
        """
        Raises:
            EmployeeNotFoundError: If no record has the id
        """
        employee = self.repository.get(employee_id)
        if employee is None:
            raise EmployeeNotFoundError("Employee not found")
        return employee

    def add_employee(
        self,
        employer_address: str,
        wallet_address: str,
        profile: EmployeeProfile | None = None,
    ) -> Employee:
        """
        Add a wallet to an employer's directory.

        Raises:
            EmployeeExistsError: If the employer already lists the wallet (the
                existing record is attached to the error)
            StoreError: If the write fails
        """
        employee = self._insert(employer_address, wallet_address, profile or EmployeeProfile())
        self._log_added([employee], employer_address)
        return employee

    def bulk_add(self, employer_address: str, entries: Iterable[EmployeeEntry]) -> BulkAddResult:
        """
        Add many wallets, entry by entry.

        Malformed wallets and failed writes are reported in ``errors``;
        wallets already listed are reported in ``skipped``. One entry never
        fails the others.
        """
        result = BulkAddResult()
        for entry in entries:
            if not is_valid_address(entry.wallet_address.strip()):
                result.errors.append(
                    BulkEntryError(wallet_address=entry.wallet_address, error="Invalid address format")
                )
                continue
            try:
                result.added.append(
                    self._insert(employer_address, entry.wallet_address, entry.profile())
                )
            except EmployeeExistsError:
                result.skipped.append(entry.wallet_address)
            except StoreError as e:
                result.errors.append(
                    BulkEntryError(wallet_address=entry.wallet_address, error=e.message)
                )

        logger.info(
            "employees_bulk_added",
            employer_address=normalize_address(employer_address),
            added=len(result.added),
            skipped=len(result.skipped),
            errors=len(result.errors),
        )
        if result.added:
            self._log_added(result.added, employer_address)
        return result

    def update_employee(self, employee_id: str, profile: EmployeeProfile) -> Employee:
        """
        Apply the fields set on ``profile``; ``last_synced_at`` always advances.

        Raises:
            EmployeeNotFoundError: If no record has the id
        """
        changes = {**profile.changes(), "last_synced_at": self._clock()}
        try:
            employee = self.repository.update(employee_id, changes)
        except StoreError as e:
            self._log_write_failed("update", employee_id, e)
            raise

        if self.log_engine is not None:
            self.log_engine.log_database(
                "Employee record updated",
                operation="update",
                collection=COLLECTION,
                document_id=employee.id,
                user_address=employee.employer_address,
                details={"fields": sorted(profile.changes())},
            )
        return employee

    def remove_employee(self, employee_id: str) -> Employee:
        """
        Raises:
            EmployeeNotFoundError: If no record has the id
        """
        employee = self.repository.delete(employee_id)
        self._log_removed(employee)
        return employee

    def remove_by_wallet(self, employer_address: str, wallet_address: str) -> Employee:
        """
        Raises:
            EmployeeNotFoundError: If the employer does not list the wallet
        """
        employee = self.repository.delete_by_wallet(employer_address, wallet_address)
        self._log_removed(employee)
        return employee

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _insert(self, employer_address: str, wallet_address: str, profile: EmployeeProfile) -> Employee:
        now = self._clock()
        employee = Employee(
            employer_address=normalize_address(employer_address),
            wallet_address=normalize_address(wallet_address),
            **profile.model_dump(exclude={"tags"}),
            tags=profile.tags or [],
            added_at=now,
            created_at=now,
            updated_at=now,
        )
        try:
            employee = self.repository.insert(employee)
        except StoreError as e:
            self._log_write_failed("insert", None, e, employer_address)
            raise

        if self.log_engine is not None:
            self.log_engine.log_database(
                "Employee record inserted",
                operation="insert",
                collection=COLLECTION,
                document_id=employee.id,
                user_address=employee.employer_address,
            )
        return employee

    def _log_added(self, employees: list[Employee], employer_address: str) -> None:
        if self.log_engine is None:
            return
        self.log_engine.log_business(
            "Employees added" if len(employees) > 1 else "Employee added",
            level=LogLevel.SUCCESS,
            employer_address=employer_address,
            employee_address=employees[0].wallet_address if len(employees) == 1 else None,
            details={
                "count": len(employees),
                "employee_ids": [employee.id for employee in employees],
            },
            tags=["employee", "add"],
        )

    def _log_removed(self, employee: Employee) -> None:
        logger.info(
            "employee_removed",
            employee_id=employee.id,
            employer_address=employee.employer_address,
        )
        if self.log_engine is None:
            return
        self.log_engine.log_database(
            "Employee record deleted",
            operation="delete",
            collection=COLLECTION,
            document_id=employee.id,
            user_address=employee.employer_address,
        )
        self.log_engine.log_business(
            "Employee removed",
            level=LogLevel.WARN,
            employer_address=employee.employer_address,
            employee_address=employee.wallet_address,
            details={"employee_id": employee.id},
            tags=["employee", "remove"],
        )

    def _log_write_failed(
        self,
        operation: str,
        employee_id: str | None,
        error: StoreError,
        employer_address: str | None = None,
    ) -> None:
        if self.log_engine is None:
            return
        self.log_engine.log_database(
            f"Employee {operation} failed",
            operation=operation,
            collection=COLLECTION,
            document_id=employee_id,
            level=LogLevel.ERROR,
            user_address=employer_address,
            error=error.__cause__ or error,
        )
