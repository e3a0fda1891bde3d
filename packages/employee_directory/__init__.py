"""
Employee directory package: off-chain employee metadata per employer, with
its SQLite repository and the service that audits directory changes.
"""

from .directory import EmployeeDirectory
from .models import (
    BulkAddResult,
    BulkEntryError,
    Employee,
    EmployeeEntry,
    EmployeeProfile,
)
from .repository import EmployeeRepository

__all__ = [
    "BulkAddResult",
    "BulkEntryError",
    "Employee",
    "EmployeeDirectory",
    "EmployeeEntry",
    "EmployeeProfile",
    "EmployeeRepository",
]
