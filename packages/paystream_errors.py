"""
Error kinds shared by the stream and log subsystems.

Each error carries the HTTP status the API layer answers with, so handlers
never need to inspect error types one by one.
"""

from typing import Any


class PayStreamError(Exception):
    """Base class for all PayStream domain errors."""

    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidTermsError(PayStreamError):
    """Raised when stream terms or a sync snapshot are structurally impossible."""

    status_code = 400


class StreamConflictError(PayStreamError):
    """Raised when an open stream already exists for the employer/employee pair.

    The existing record travels with the error so callers can treat a repeated
    create as idempotent.
    """

    status_code = 409

    def __init__(self, message: str, existing: Any = None):
        super().__init__(message)
        self.existing = existing


class StreamNotFoundError(PayStreamError):
    """Raised when no open stream matches the employer/employee pair."""

    status_code = 404


class StreamTerminalError(PayStreamError):
    """Raised when a transition targets a cancelled stream."""

    status_code = 409


class EmployeeExistsError(PayStreamError):
    """Raised when the employer already lists the wallet.

    Like StreamConflictError, the existing record travels with the error.
    """

    status_code = 409

    def __init__(self, message: str, existing: Any = None):
        super().__init__(message)
        self.existing = existing


class EmployeeNotFoundError(PayStreamError):
    """Raised when no employee record matches the id or wallet."""

    status_code = 404


class QueryValidationError(PayStreamError):
    """Raised when a log filter, pagination or retention parameter is invalid."""

    status_code = 400


class ServiceUnavailableError(PayStreamError):
    """Raised when a request arrives before its service has been started."""

    status_code = 503


class StoreError(PayStreamError):
    """Raised when the underlying persistence layer fails.

    The message stays generic; the cause is chained and logged, never returned
    to API callers.
    """

    status_code = 500

    def __init__(self, message: str = "Storage operation failed"):
        super().__init__(message)


__all__ = [
    "EmployeeExistsError",
    "EmployeeNotFoundError",
    "InvalidTermsError",
    "PayStreamError",
    "QueryValidationError",
    "ServiceUnavailableError",
    "StoreError",
    "StreamConflictError",
    "StreamNotFoundError",
    "StreamTerminalError",
]
