"""
Stream lifecycle controller.

Applies the stream state machine (active <-> paused -> cancelled) on top of
the repository, reconciles cached records with on-chain snapshots and emits
audit records for lifecycle changes.
"""

from datetime import datetime, timezone
from typing import Callable

from packages.audit_store import (
    AuditRecordCreate,
    AuditSink,
    ErrorInfo,
    LogCategory,
    LogLevel,
    NullAuditSink,
)
from packages.paystream_errors import (
    InvalidTermsError,
    StoreError,
    StreamConflictError,
    StreamNotFoundError,
)
from packages.stream_registry import (
    MAX_STORED_INT,
    Stream,
    StreamPatch,
    StreamRepository,
    StreamStatus,
    StreamTerms,
    normalize_address,
    parse_amount,
    status_for_paused,
)
from packages.structured_logging import get_logger

logger = get_logger(__name__)


def validate_terms(terms: StreamTerms) -> None:
    """
    Reject terms that cannot describe a stream.

    Raises:
        InvalidTermsError: On the first impossible value
    """
    if terms.duration_months < 1:
        raise InvalidTermsError("duration_months must be at least 1")
    if terms.duration_months > MAX_STORED_INT:
        raise InvalidTermsError(f"duration_months must not exceed {MAX_STORED_INT}")
    if not 0 <= terms.tax_percent <= 100:
        raise InvalidTermsError("tax_percent must be between 0 and 100")
    if terms.start_time < 0 or terms.end_time < 0:
        raise InvalidTermsError("start_time and end_time must be non-negative")
    if terms.start_time > MAX_STORED_INT or terms.end_time > MAX_STORED_INT:
        raise InvalidTermsError(f"start_time and end_time must not exceed {MAX_STORED_INT}")
    if parse_amount(terms.monthly_salary) is None:
        raise InvalidTermsError("monthly_salary must be a non-negative decimal string")
    if parse_amount(terms.rate_per_second) is None:
        raise InvalidTermsError("rate_per_second must be a non-negative decimal string")


class StreamController:
    """
    Lifecycle operations for salary streams.

    Every mutation is a single atomic repository update scoped to the open
    stream of a pair. Audit records are emitted after the mutation commits,
    through a best-effort sink; a failing sink never fails the operation.
    """

    def __init__(
        self,
        repository: StreamRepository,
        audit_sink: AuditSink | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """
        Initialize controller.

        Args:
            repository: Stream persistence
            audit_sink: Destination for lifecycle audit records
            clock: Source of the current time (defaults to UTC now)
        """
        self.repository = repository
        self.audit_sink = audit_sink or NullAuditSink()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_open_stream(self, employer_address: str, employee_address: str) -> Stream:
        """
        Get the open stream for a pair.

        Raises:
            StreamNotFoundError: If the pair has no open stream
        """
        stream = self.repository.find_open_stream(employer_address, employee_address)
        if stream is None:
            raise StreamNotFoundError("Stream not found")
        return stream

    def list_streams(
        self,
        employer_address: str,
        status: StreamStatus | None = None,
    ) -> list[Stream]:
        """All streams of an employer, newest first."""
        return self.repository.find_streams(employer_address, status)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def create_stream(
        self,
        employer_address: str,
        employee_address: str,
        terms: StreamTerms,
    ) -> Stream:
        """
        Create an active stream for a pair.

        Returns:
            The new stream

        Raises:
            InvalidTermsError: If the terms are structurally impossible
            StreamConflictError: If the pair already has an open stream (the
                existing record is attached to the error)
            StoreError: If the write fails
        """
        validate_terms(terms)
        employer_address = normalize_address(employer_address)
        employee_address = normalize_address(employee_address)

        existing = self.repository.find_open_stream(employer_address, employee_address)
        if existing is not None:
            raise StreamConflictError(
                "Active stream already exists for this employee", existing=existing
            )

        stream = Stream.from_terms(employer_address, employee_address, terms, self._clock())
        try:
            stream = self.repository.insert(stream)
        except StreamConflictError:
            raise
        except StoreError as e:
            self._emit(
                LogLevel.ERROR,
                "Failed to create salary stream",
                employer_address,
                employee_address,
                details={"monthly_salary": terms.monthly_salary},
                tags=["stream", "create", "failed"],
                error=e,
            )
            raise

        self._emit(
            LogLevel.SUCCESS,
            "Salary stream created",
            employer_address,
            employee_address,
            details={
                "stream_id": stream.id,
                "monthly_salary": stream.monthly_salary,
                "duration_months": stream.duration_months,
                "tax_percent": stream.tax_percent,
                "creation_tx_hash": stream.creation_tx_hash,
            },
            tags=["stream", "create", "payroll"],
            transaction_hash=stream.creation_tx_hash,
        )
        return stream

    def set_paused(self, employer_address: str, employee_address: str, paused: bool) -> Stream:
        """
        Pause or resume the open stream of a pair.

        Raises:
            StreamNotFoundError: If the pair has no open stream
            StreamTerminalError: If the stream was cancelled concurrently
        """
        stream = self.repository.update_open_stream(
            employer_address,
            employee_address,
            StreamPatch(
                paused=paused,
                status=status_for_paused(paused),
                last_synced_at=self._clock(),
            ),
        )

        self._emit(
            LogLevel.INFO,
            f"Stream {'paused' if paused else 'resumed'}",
            stream.employer_address,
            stream.employee_address,
            details={"stream_id": stream.id, "paused": paused},
            tags=["stream", "pause" if paused else "resume"],
        )
        return stream

    def cancel_stream(
        self,
        employer_address: str,
        employee_address: str,
        cancellation_tx_hash: str | None = None,
    ) -> Stream:
        """
        Cancel the open stream of a pair. Cancellation is terminal.

        Raises:
            StreamNotFoundError: If the pair has no open stream (including one
                that is already cancelled)
        """
        stream = self.repository.update_open_stream(
            employer_address,
            employee_address,
            StreamPatch(
                status=StreamStatus.CANCELLED,
                cancellation_tx_hash=cancellation_tx_hash,
                last_synced_at=self._clock(),
            ),
        )

        self._emit(
            LogLevel.WARN,
            "Stream cancelled",
            stream.employer_address,
            stream.employee_address,
            details={"stream_id": stream.id, "cancellation_tx_hash": cancellation_tx_hash},
            tags=["stream", "cancel"],
            transaction_hash=cancellation_tx_hash,
        )
        return stream

    def sync_stream(
        self,
        employer_address: str,
        employee_address: str,
        observed_withdrawn: str | None = None,
        observed_paused: bool | None = None,
    ) -> Stream:
        """
        Reconcile the cached record with an on-chain snapshot.

        Only the observed fields that are present are applied;
        ``last_synced_at`` always advances.

        Raises:
            InvalidTermsError: If observed_withdrawn is not a decimal string
            StreamNotFoundError: If the pair has no open stream
        """
        changes: dict = {"last_synced_at": self._clock()}
        if observed_withdrawn is not None:
            if parse_amount(observed_withdrawn) is None:
                raise InvalidTermsError("withdrawn must be a non-negative decimal string")
            changes["withdrawn"] = observed_withdrawn
        if observed_paused is not None:
            changes["paused"] = observed_paused
            changes["status"] = status_for_paused(observed_paused)

        stream = self.repository.update_open_stream(
            employer_address, employee_address, StreamPatch(**changes)
        )

        logger.debug(
            "stream_synced",
            stream_id=stream.id,
            withdrawn=stream.withdrawn,
            status=stream.status.value,
        )
        return stream

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def _emit(
        self,
        level: LogLevel,
        message: str,
        employer_address: str,
        employee_address: str,
        details: dict,
        tags: list[str],
        transaction_hash: str | None = None,
        error: Exception | None = None,
    ) -> None:
        try:
            self.audit_sink.emit(
                AuditRecordCreate(
                    level=level,
                    category=LogCategory.BUSINESS,
                    message=message,
                    user_address=employer_address,
                    employer_address=employer_address,
                    employee_address=employee_address,
                    transaction_hash=transaction_hash,
                    details=details,
                    tags=tags,
                    error=ErrorInfo.from_exception(error) if error else None,
                )
            )
        except Exception as e:
            logger.error("stream_audit_failed", message=message, error=str(e))
