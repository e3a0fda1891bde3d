"""
Employee directory models.

An employee record is off-chain metadata an employer keeps about a wallet it
pays. Nothing here is authoritative for payroll; streams carry the terms.
"""

from datetime import datetime, timezone
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from packages.audit_store.models import normalize_tags


class EmployeeProfile(BaseModel):
    """
    Editable metadata of an employee.

    Used both for new records and for partial updates; only the fields
    explicitly set are written on update.
    """

    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(None, max_length=200, description="Display name")
    email: str | None = Field(None, max_length=320, description="Contact email")
    department: str | None = Field(None, max_length=200, description="Department")
    notes: str | None = Field(None, max_length=2000, description="Free-form notes")
    tags: list[str] | None = Field(None, max_length=50, description="Labels")

    @field_validator("name", "department")
    @classmethod
    def strip_text(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return v.strip()

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return v.strip().lower()

    @field_validator("tags")
    @classmethod
    def dedupe_tags(cls, v: list[str] | None) -> list[str] | None:
        return normalize_tags(v) if v is not None else None

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True)


class EmployeeEntry(EmployeeProfile):
    """
    One entry of a bulk add.

    The wallet is checked per entry by the directory so that one malformed
    address lands in the errors list instead of rejecting the batch.
    """

    wallet_address: str = Field(..., max_length=100, description="Employee wallet")

    def profile(self) -> EmployeeProfile:
        return EmployeeProfile(**self.model_dump(exclude={"wallet_address"}, exclude_unset=True))


class Employee(BaseModel):
    """Stored employee record."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    employer_address: str
    wallet_address: str

    name: str | None = None
    email: str | None = None
    department: str | None = None
    notes: str | None = None
    tags: list[str] = Field(default_factory=list)

    added_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    last_synced_at: datetime | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"frozen": True}


class BulkEntryError(BaseModel):
    """Entry of a bulk add that could not be stored."""

    wallet_address: str
    error: str


class BulkAddResult(BaseModel):
    """Outcome of a bulk add, per entry."""

    added: list[Employee] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list, description="Wallets already listed")
    errors: list[BulkEntryError] = Field(default_factory=list)
