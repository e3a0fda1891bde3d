"""
Stream API request/response schemas.

Requests are validated here, before any controller call: addresses must be
``0x`` followed by 40 hex characters and amounts must be decimal strings.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from packages.stream_registry import (
    ADDRESS_PATTERN,
    MAX_STORED_INT,
    Stream,
    StreamTerms,
    is_valid_address,
)

DECIMAL_PATTERN = r"^\d+(\.\d+)?$"


class CreateStreamRequest(BaseModel):
    """Request to record a stream created on chain."""
    model_config = ConfigDict(extra="forbid")

    employer_address: str = Field(..., pattern=ADDRESS_PATTERN, description="Employer wallet")
    employee_address: str = Field(..., pattern=ADDRESS_PATTERN, description="Employee wallet")
    monthly_salary: str = Field(..., pattern=DECIMAL_PATTERN, description="Monthly salary (decimal string)")
    rate_per_second: str = Field(..., pattern=DECIMAL_PATTERN, description="Streaming rate (decimal string)")
    duration_months: int = Field(..., ge=1, le=MAX_STORED_INT, description="Stream duration in months")
    tax_percent: int = Field(..., ge=0, le=100, description="Tax withheld, percent")
    start_time: int = Field(..., ge=0, le=MAX_STORED_INT, description="Start time (unix seconds)")
    end_time: int = Field(..., ge=0, le=MAX_STORED_INT, description="End time (unix seconds)")
    creation_tx_hash: Optional[str] = Field(None, max_length=100, description="Creating transaction")
    notes: Optional[str] = Field(None, max_length=1000, description="Off-chain notes")

    def to_terms(self) -> StreamTerms:
        return StreamTerms(**self.model_dump(exclude={"employer_address", "employee_address"}))


class UpdateStreamStatusRequest(BaseModel):
    """Request to pause or resume a stream."""
    model_config = ConfigDict(extra="forbid")

    paused: bool = Field(..., description="True to pause, False to resume")


class CancelStreamRequest(BaseModel):
    """Request to cancel a stream."""
    model_config = ConfigDict(extra="forbid")

    cancellation_tx_hash: Optional[str] = Field(None, max_length=100, description="Cancelling transaction")


class SyncStreamRequest(BaseModel):
    """On-chain snapshot to reconcile. Omitted fields are left untouched."""
    model_config = ConfigDict(extra="forbid")

    withdrawn: Optional[str] = Field(None, pattern=DECIMAL_PATTERN, description="Withdrawn amount")
    paused: Optional[bool] = Field(None, description="Paused flag")


class StreamResponse(BaseModel):
    """Single stream."""

    success: bool = True
    stream: Stream


class StreamListResponse(BaseModel):
    """Streams of an employer."""

    success: bool = True
    count: int
    streams: list[Stream]


__all__ = [
    "ADDRESS_PATTERN",
    "CancelStreamRequest",
    "CreateStreamRequest",
    "DECIMAL_PATTERN",
    "StreamListResponse",
    "StreamResponse",
    "SyncStreamRequest",
    "UpdateStreamStatusRequest",
    "is_valid_address",
]
