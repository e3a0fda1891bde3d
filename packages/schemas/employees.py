"""
Employee directory API request/response schemas.
"""

from pydantic import BaseModel, ConfigDict, Field

from packages.employee_directory import BulkAddResult, Employee, EmployeeEntry, EmployeeProfile
from packages.stream_registry import ADDRESS_PATTERN

MAX_BULK_ENTRIES = 500


class AddEmployeeRequest(EmployeeProfile):
    """Request to add a wallet to an employer's directory."""
    model_config = ConfigDict(extra="forbid")

    employer_address: str = Field(..., pattern=ADDRESS_PATTERN, description="Employer wallet")
    wallet_address: str = Field(..., pattern=ADDRESS_PATTERN, description="Employee wallet")

    def profile(self) -> EmployeeProfile:
        return EmployeeProfile(
            **self.model_dump(exclude={"employer_address", "wallet_address"}, exclude_unset=True)
        )


class BulkAddEmployeesRequest(BaseModel):
    """Request to add many wallets at once. Entries are checked one by one."""
    model_config = ConfigDict(extra="forbid")

    employer_address: str = Field(..., pattern=ADDRESS_PATTERN, description="Employer wallet")
    employees: list[EmployeeEntry] = Field(..., max_length=MAX_BULK_ENTRIES)


class UpdateEmployeeRequest(EmployeeProfile):
    """Metadata update; omitted fields are left untouched."""


class EmployeeResponse(BaseModel):
    """Single employee."""

    success: bool = True
    employee: Employee


class EmployeeListResponse(BaseModel):
    """Employees of an employer."""

    success: bool = True
    count: int
    employees: list[Employee]


class BulkAddResponse(BaseModel):
    """Per-entry outcome of a bulk add."""

    success: bool = True
    results: BulkAddResult


class EmployeeDeletedResponse(BaseModel):
    success: bool = True
    message: str = "Employee deleted"


__all__ = [
    "AddEmployeeRequest",
    "BulkAddEmployeesRequest",
    "BulkAddResponse",
    "EmployeeDeletedResponse",
    "EmployeeListResponse",
    "EmployeeResponse",
    "MAX_BULK_ENTRIES",
    "UpdateEmployeeRequest",
]
