"""Tests for request ID and request audit middleware.

This module contains tests for the FastAPI middleware that injects request
IDs into the logging context and records each request as an audit record.
"""

import pytest
from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient

from packages.audit_store import (
    LogCategory,
    LogLevel,
    RequestAuditMiddleware,
    RequestIdMiddleware,
    level_for_status,
)
from packages.structured_logging import get_request_id

WALLET = "0x" + "a" * 40


class RecordingSink:
    """Sink that keeps emitted records in memory."""

    def __init__(self):
        self.records = []

    def emit(self, record):
        self.records.append(record)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def app(sink: RecordingSink) -> FastAPI:
    """Create test FastAPI app with middleware."""
    app = FastAPI()
    app.add_middleware(RequestAuditMiddleware, sink_getter=lambda: sink)
    app.add_middleware(RequestIdMiddleware)

    @app.get("/test")
    async def test_endpoint() -> dict:
        """Test endpoint that returns request ID."""
        return {"request_id": get_request_id()}

    @app.get("/streams/{employer_address}")
    async def stream_endpoint(employer_address: str) -> dict:
        return {"employer_address": employer_address}

    @app.get("/missing")
    async def missing_endpoint() -> dict:
        raise HTTPException(status_code=404, detail="nope")

    return app


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    """Create test client."""
    return TestClient(app)


class TestRequestIdMiddleware:
    """Tests for RequestIdMiddleware."""

    def test_generates_request_id_when_not_provided(self, client: TestClient) -> None:
        response = client.get("/test")
        assert response.status_code == 200

        request_id = response.headers["x-request-id"]
        assert len(request_id) == 36  # UUID format
        assert response.json()["request_id"] == request_id

    def test_uses_provided_request_id(self, client: TestClient) -> None:
        custom_id = "test-request-id-12345"
        response = client.get("/test", headers={"X-Request-ID": custom_id})

        assert response.headers["x-request-id"] == custom_id
        assert response.json()["request_id"] == custom_id

    def test_request_id_isolated_per_request(self, client: TestClient) -> None:
        id1 = client.get("/test").headers["x-request-id"]
        id2 = client.get("/test").headers["x-request-id"]

        assert id1 != id2


class TestRequestAuditMiddleware:
    """Tests for RequestAuditMiddleware."""

    def test_records_request(self, client: TestClient, sink: RecordingSink) -> None:
        response = client.get("/test?page=2", headers={"X-Wallet-Address": WALLET})

        assert len(sink.records) == 1
        record = sink.records[0]
        assert record.category == LogCategory.HTTP
        assert record.level == LogLevel.SUCCESS
        assert record.method == "GET"
        assert record.endpoint == "/test"
        assert record.status_code == 200
        assert record.duration_ms >= 0
        assert record.user_address == WALLET
        assert record.request_id == response.headers["x-request-id"]
        assert record.details["query"] == {"page": "2"}

    def test_records_route_template_and_path_params(
        self, client: TestClient, sink: RecordingSink
    ) -> None:
        client.get(f"/streams/{WALLET.upper().replace('0X', '0x')}")

        record = sink.records[0]
        assert record.endpoint == "/streams/{employer_address}"
        assert record.employer_address == WALLET
        assert record.user_address == WALLET

    def test_client_error_recorded_as_warning(
        self, client: TestClient, sink: RecordingSink
    ) -> None:
        client.get("/missing")

        assert sink.records[0].level == LogLevel.WARN
        assert sink.records[0].status_code == 404

    def test_no_sink_no_record(self) -> None:
        app = FastAPI()
        app.add_middleware(RequestAuditMiddleware, sink_getter=lambda: None)

        @app.get("/ping")
        async def ping() -> dict:
            return {"ok": True}

        assert TestClient(app).get("/ping").status_code == 200

    def test_failing_sink_does_not_fail_request(self) -> None:
        class BrokenSink:
            def emit(self, record):
                raise RuntimeError("boom")

        app = FastAPI()
        app.add_middleware(RequestAuditMiddleware, sink_getter=lambda: BrokenSink())

        @app.get("/ping")
        async def ping() -> dict:
            return {"ok": True}

        assert TestClient(app).get("/ping").status_code == 200


@pytest.mark.parametrize(
    "status_code, level",
    [
        (200, LogLevel.SUCCESS),
        (201, LogLevel.SUCCESS),
        (304, LogLevel.INFO),
        (400, LogLevel.WARN),
        (404, LogLevel.WARN),
        (500, LogLevel.ERROR),
    ],
)
def test_level_for_status(status_code: int, level: LogLevel) -> None:
    assert level_for_status(status_code) == level
