"""
Salary stream models.

A stream mirrors one employer/employee payroll relationship whose
authoritative state lives on chain. Amounts are decimal strings so that
wei-scale values survive storage without float drift.
"""

import re
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field


class StreamStatus(str, Enum):
    """Lifecycle state of a stream."""

    ACTIVE = "active"
    PAUSED = "paused"
    CANCELLED = "cancelled"  # Terminal

    @property
    def is_open(self) -> bool:
        return self in OPEN_STATUSES


OPEN_STATUSES = (StreamStatus.ACTIVE, StreamStatus.PAUSED)

# Largest value an INTEGER column holds
MAX_STORED_INT = 2**63 - 1

ADDRESS_PATTERN = r"^0x[a-fA-F0-9]{40}$"

_ADDRESS_RE = re.compile(ADDRESS_PATTERN)


def is_valid_address(value: str | None) -> bool:
    """Check for a 0x-prefixed, 40 hex character wallet address."""
    return bool(value) and _ADDRESS_RE.match(value) is not None


def normalize_address(address: str) -> str:
    """Lowercase and strip a wallet address."""
    return address.strip().lower()


def status_for_paused(paused: bool) -> StreamStatus:
    """Status mirrored from the paused flag."""
    return StreamStatus.PAUSED if paused else StreamStatus.ACTIVE


def parse_amount(value: str) -> Decimal | None:
    """Parse a non-negative decimal string; None if it is not one."""
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        return None
    if not amount.is_finite() or amount < 0:
        return None
    return amount


class StreamTerms(BaseModel):
    """
    Business terms of a new stream, as reported by the creating transaction.

    Shape is checked at the API boundary; the controller only rejects values
    that cannot describe a stream at all.
    """

    monthly_salary: str
    rate_per_second: str
    duration_months: int
    tax_percent: int
    start_time: int
    end_time: int
    creation_tx_hash: str | None = None
    notes: str | None = None


class StreamPatch(BaseModel):
    """
    Partial update applied to an open stream.

    Only fields explicitly set are written (``model_dump(exclude_unset=True)``).
    """

    paused: bool | None = None
    status: StreamStatus | None = None
    withdrawn: str | None = None
    cancellation_tx_hash: str | None = None
    last_synced_at: datetime | None = None

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True)


class Stream(BaseModel):
    """Stored salary stream record."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    employer_address: str
    employee_address: str

    monthly_salary: str
    rate_per_second: str
    duration_months: int
    tax_percent: int
    start_time: int
    end_time: int

    withdrawn: str = "0"
    paused: bool = False
    status: StreamStatus = StreamStatus.ACTIVE

    creation_tx_hash: str | None = None
    cancellation_tx_hash: str | None = None
    notes: str | None = None

    last_synced_at: datetime | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"frozen": True}

    @property
    def is_open(self) -> bool:
        return self.status.is_open

    @classmethod
    def from_terms(
        cls,
        employer_address: str,
        employee_address: str,
        terms: StreamTerms,
        now: datetime,
    ) -> "Stream":
        """New active stream for a pair."""
        return cls(
            employer_address=normalize_address(employer_address),
            employee_address=normalize_address(employee_address),
            **terms.model_dump(),
            withdrawn="0",
            paused=False,
            status=StreamStatus.ACTIVE,
            last_synced_at=now,
            created_at=now,
            updated_at=now,
        )
