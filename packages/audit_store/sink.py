"""Audit sinks: how producers hand records to the audit store.

Emitting an audit record is best-effort. A sink never raises into the caller;
failures are logged locally and the business operation carries on.
"""

import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Protocol, runtime_checkable

from packages.structured_logging import get_logger

from .models import AuditRecordCreate
from .store import AuditStore

logger = get_logger(__name__)


@runtime_checkable
class AuditSink(Protocol):
    """Anything that accepts audit records."""

    def emit(self, record: AuditRecordCreate) -> None:
        ...


class NullAuditSink:
    """Sink that drops every record."""

    def emit(self, record: AuditRecordCreate) -> None:
        return None


class StoreAuditSink:
    """Writes records synchronously to an AuditStore."""

    def __init__(self, store: AuditStore):
        self._store = store

    def emit(self, record: AuditRecordCreate) -> None:
        try:
            self._store.append(record)
        except Exception as e:
            logger.error(
                "audit_emit_failed",
                category=record.category.value,
                message=record.message,
                error=str(e),
            )


class BackgroundAuditSink:
    """
    Dispatches records to an AuditStore on a worker thread pool.

    ``emit`` returns immediately, so a record may become visible to queries
    after the operation that produced it has already answered its caller.
    ``flush`` waits for the records dispatched so far; ``close`` stops the
    pool.
    """

    def __init__(self, store: AuditStore, max_workers: int = 2):
        """
        Initialize background sink.

        Args:
            store: Destination store
            max_workers: Worker threads writing to the store
        """
        self._store = store
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="audit-sink"
        )
        self._pending: set[Future] = set()
        self._lock = threading.Lock()
        self._closed = False

    def emit(self, record: AuditRecordCreate) -> None:
        with self._lock:
            if self._closed:
                logger.warning("audit_sink_closed", message=record.message)
                return
            future = self._executor.submit(self._write, record)
            self._pending.add(future)
        future.add_done_callback(self._discard)

    def flush(self, timeout: float | None = 5.0) -> bool:
        """
        Wait for dispatched records to be written.

        Returns:
            True if every pending write finished within the timeout
        """
        with self._lock:
            pending = list(self._pending)
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def close(self, wait_for_pending: bool = True) -> None:
        """Stop accepting records and shut the worker pool down."""
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=wait_for_pending)

    def _write(self, record: AuditRecordCreate) -> None:
        try:
            self._store.append(record)
        except Exception as e:
            logger.error(
                "audit_emit_failed",
                category=record.category.value,
                message=record.message,
                error=str(e),
            )

    def _discard(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)


__all__ = ["AuditSink", "BackgroundAuditSink", "NullAuditSink", "StoreAuditSink"]
