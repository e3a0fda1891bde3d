"""
Tests for audit sinks.
"""

import threading

import pytest

from packages.audit_store import (
    AuditRecordCreate,
    AuditSink,
    AuditStore,
    BackgroundAuditSink,
    LogCategory,
    LogFilter,
    LogLevel,
    NullAuditSink,
    StoreAuditSink,
)
from packages.paystream_errors import StoreError


def record(message: str = "event") -> AuditRecordCreate:
    return AuditRecordCreate(level=LogLevel.INFO, category=LogCategory.SYSTEM, message=message)


class FailingStore:
    """Store whose writes always fail."""

    def append(self, record_create):
        raise StoreError()


@pytest.fixture
def audit_store(tmp_path) -> AuditStore:
    return AuditStore(db_path=tmp_path / "audit.db")


class TestSinkProtocol:

    def test_sinks_satisfy_protocol(self, audit_store):
        assert isinstance(NullAuditSink(), AuditSink)
        assert isinstance(StoreAuditSink(audit_store), AuditSink)
        sink = BackgroundAuditSink(audit_store)
        try:
            assert isinstance(sink, AuditSink)
        finally:
            sink.close()


class TestStoreAuditSink:

    def test_writes_synchronously(self, audit_store):
        StoreAuditSink(audit_store).emit(record("written"))

        assert [r.message for r in audit_store.find(LogFilter())] == ["written"]

    def test_store_failure_is_swallowed(self):
        # Must not raise
        StoreAuditSink(FailingStore()).emit(record())


class TestBackgroundAuditSink:

    def test_flush_waits_for_writes(self, audit_store):
        sink = BackgroundAuditSink(audit_store, max_workers=2)
        try:
            for i in range(10):
                sink.emit(record(f"event-{i}"))

            assert sink.flush(timeout=10.0)
            assert audit_store.count(LogFilter()) == 10
        finally:
            sink.close()

    def test_emit_returns_before_write(self, audit_store):
        release = threading.Event()

        class SlowStore:
            def append(self, record_create):
                release.wait(timeout=5.0)
                return audit_store.append(record_create)

        sink = BackgroundAuditSink(SlowStore(), max_workers=1)
        try:
            sink.emit(record("slow"))
            assert audit_store.count(LogFilter()) == 0

            release.set()
            assert sink.flush(timeout=10.0)
            assert audit_store.count(LogFilter()) == 1
        finally:
            sink.close()

    def test_failed_write_is_swallowed(self):
        sink = BackgroundAuditSink(FailingStore())
        try:
            sink.emit(record())
            assert sink.flush(timeout=10.0)
        finally:
            sink.close()

    def test_emit_after_close_is_dropped(self, audit_store):
        sink = BackgroundAuditSink(audit_store)
        sink.close()

        sink.emit(record("late"))

        assert audit_store.count(LogFilter()) == 0

    def test_close_waits_for_pending(self, audit_store):
        sink = BackgroundAuditSink(audit_store)
        for i in range(5):
            sink.emit(record(f"event-{i}"))

        sink.close(wait_for_pending=True)

        assert audit_store.count(LogFilter()) == 5
