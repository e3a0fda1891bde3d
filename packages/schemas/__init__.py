"""Schemas package for the PayStream API.

This package contains Pydantic models for request bodies and responses.
"""

from .employees import (
    AddEmployeeRequest,
    BulkAddEmployeesRequest,
    BulkAddResponse,
    EmployeeDeletedResponse,
    EmployeeListResponse,
    EmployeeResponse,
    UpdateEmployeeRequest,
)
from .logs import (
    LogCleanupResponse,
    LogQueryResponse,
    LogStatsResponse,
    Pagination,
)
from .streams import (
    ADDRESS_PATTERN,
    DECIMAL_PATTERN,
    CancelStreamRequest,
    CreateStreamRequest,
    StreamListResponse,
    StreamResponse,
    SyncStreamRequest,
    UpdateStreamStatusRequest,
    is_valid_address,
)

__all__ = [
    # Streams
    "ADDRESS_PATTERN",
    "CancelStreamRequest",
    "CreateStreamRequest",
    "DECIMAL_PATTERN",
    "StreamListResponse",
    "StreamResponse",
    "SyncStreamRequest",
    "UpdateStreamStatusRequest",
    "is_valid_address",
    # Employees
    "AddEmployeeRequest",
    "BulkAddEmployeesRequest",
    "BulkAddResponse",
    "EmployeeDeletedResponse",
    "EmployeeListResponse",
    "EmployeeResponse",
    "UpdateEmployeeRequest",
    # Logs
    "LogCleanupResponse",
    "LogQueryResponse",
    "LogStatsResponse",
    "Pagination",
]
