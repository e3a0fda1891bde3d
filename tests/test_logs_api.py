"""
Integration tests for the admin log API endpoints.
"""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

import apps.paystream_api.main as api
from apps.paystream_api.main import app
from packages.audit_store import AuditRecordCreate, LogCategory, LogLevel
from packages.paystream_config import reset_paystream_config

ADMIN = "0x" + "d" * 40
STRANGER = "0x" + "c" * 40
EMPLOYER = "0x" + "a" * 40

ADMIN_HEADERS = {"X-Wallet-Address": ADMIN}


@pytest.fixture
def client(tmp_path, monkeypatch):
    """Test client with a configured admin and synchronous audit writes."""
    monkeypatch.setenv("PAYSTREAM_STREAMS_DB_PATH", str(tmp_path / "streams.db"))
    monkeypatch.setenv("PAYSTREAM_AUDIT_DB_PATH", str(tmp_path / "audit.db"))
    monkeypatch.setenv("PAYSTREAM_EMPLOYEES_DB_PATH", str(tmp_path / "employees.db"))
    monkeypatch.setenv("PAYSTREAM_ADMIN_ADDRESS", ADMIN.upper().replace("0X", "0x"))
    monkeypatch.setenv("PAYSTREAM_AUDIT_ASYNC", "false")
    reset_paystream_config()

    with TestClient(app) as test_client:
        yield test_client

    reset_paystream_config()


def seed(message: str, level: LogLevel, at: datetime, **fields) -> None:
    api.audit_store.append(
        AuditRecordCreate(
            level=level,
            category=fields.pop("category", LogCategory.BUSINESS),
            message=message,
            timestamp=at,
            **fields,
        )
    )


class TestAdminAccess:

    def test_uninitialized_engine_uses_error_envelope(self, client, monkeypatch):
        monkeypatch.setattr(api, "log_engine", None)

        response = client.get("/api/logs", headers=ADMIN_HEADERS)

        assert response.status_code == 503
        assert response.json() == {"success": False, "error": "Log engine not initialized"}

    def test_requires_wallet(self, client):
        response = client.get("/api/logs")

        assert response.status_code == 401
        assert response.json()["success"] is False

    def test_rejects_non_admin(self, client):
        response = client.get("/api/logs", headers={"X-Wallet-Address": STRANGER})

        assert response.status_code == 403
        assert response.json()["error"] == "Unauthorized: Admin access only"

    def test_wallet_query_parameter(self, client):
        response = client.get(f"/api/logs/levels?wallet_address={ADMIN}")

        assert response.status_code == 200

    def test_admin_address_case_insensitive(self, client):
        response = client.get("/api/logs/levels", headers=ADMIN_HEADERS)

        assert response.status_code == 200

    def test_rejected_attempt_is_audited(self, client):
        client.get("/api/logs", headers={"X-Wallet-Address": STRANGER})

        page = api.log_engine.query({"categories": ["auth"], "levels": ["warn"]})
        [record] = page.records
        assert record.message == "Unauthorized admin access attempt"
        assert record.user_address == STRANGER
        assert "admin" in record.tags

    def test_granted_access_is_audited(self, client):
        client.get("/api/logs/levels", headers=ADMIN_HEADERS)

        page = api.log_engine.query({"levels": ["security"]})
        assert [r.message for r in page.records] == ["Admin access granted"]

    def test_admin_not_configured(self, tmp_path, monkeypatch):
        monkeypatch.setenv("PAYSTREAM_STREAMS_DB_PATH", str(tmp_path / "s.db"))
        monkeypatch.setenv("PAYSTREAM_AUDIT_DB_PATH", str(tmp_path / "a.db"))
        monkeypatch.delenv("PAYSTREAM_ADMIN_ADDRESS", raising=False)
        monkeypatch.setenv("PAYSTREAM_AUDIT_ASYNC", "false")
        reset_paystream_config()

        try:
            with TestClient(app) as test_client:
                response = test_client.get("/api/logs", headers=ADMIN_HEADERS)
        finally:
            reset_paystream_config()

        assert response.status_code == 500
        assert response.json()["error"] == "Admin address not configured"


class TestQueryLogs:

    def test_level_and_date_filter(self, client):
        """Errors and warnings within one day, newest first, total over all pages."""
        end = datetime(2024, 6, 2, tzinfo=timezone.utc)
        start = end - timedelta(days=1)
        seed("too old", LogLevel.ERROR, start - timedelta(hours=1))
        seed("warning", LogLevel.WARN, start + timedelta(hours=1))
        seed("info", LogLevel.INFO, start + timedelta(hours=2))
        seed("error", LogLevel.ERROR, start + timedelta(hours=3))

        response = client.get(
            "/api/logs",
            params={
                "level": "error,warn",
                "start_date": start.isoformat(),
                "end_date": end.isoformat(),
                "page": 1,
                "limit": 1,
            },
            headers=ADMIN_HEADERS,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert [r["message"] for r in data["records"]] == ["error"]
        assert data["pagination"] == {"total": 2, "page": 1, "limit": 1, "pages": 2}

    def test_tag_and_search_filters(self, client):
        at = datetime(2024, 6, 1, tzinfo=timezone.utc)
        seed("Stream cancelled", LogLevel.WARN, at, tags=["stream", "cancel"])
        seed("Stream paused", LogLevel.INFO, at, tags=["stream", "pause"])

        by_tag = client.get("/api/logs?tags=cancel,unknown", headers=ADMIN_HEADERS).json()
        by_search = client.get("/api/logs?search=PAUSED", headers=ADMIN_HEADERS).json()

        assert [r["message"] for r in by_tag["records"]] == ["Stream cancelled"]
        assert [r["message"] for r in by_search["records"]] == ["Stream paused"]

    def test_http_requests_are_recorded(self, client):
        client.get("/api/health")

        data = client.get(
            "/api/logs?category=http&endpoint=/api/health", headers=ADMIN_HEADERS
        ).json()

        [record] = data["records"]
        assert record["method"] == "GET"
        assert record["status_code"] == 200
        assert record["level"] == "success"

    def test_limit_above_maximum_rejected(self, client):
        response = client.get("/api/logs?limit=501", headers=ADMIN_HEADERS)

        assert response.status_code == 400
        assert response.json()["success"] is False

    @pytest.mark.parametrize(
        "query",
        [
            "page=0",
            "page=abc",
            "level=fatal",
            "category=network",
            "sort_by=message",
            "sort_order=up",
            "start_date=2024-06-02T00:00:00Z&end_date=2024-06-01T00:00:00Z",
        ],
    )
    def test_invalid_query(self, client, query):
        response = client.get(f"/api/logs?{query}", headers=ADMIN_HEADERS)

        assert response.status_code == 400


class TestExportLogs:

    def test_export_accepts_large_limit(self, client):
        seed("exported", LogLevel.INFO, datetime(2024, 6, 1, tzinfo=timezone.utc))

        response = client.get(
            "/api/logs/export?limit=501&category=business", headers=ADMIN_HEADERS
        )

        assert response.status_code == 200
        assert response.headers["content-disposition"].startswith("attachment; filename=logs-")
        assert [r["message"] for r in response.json()] == ["exported"]

    def test_export_limit_above_maximum_rejected(self, client):
        response = client.get("/api/logs/export?limit=10001", headers=ADMIN_HEADERS)

        assert response.status_code == 400


class TestStats:

    def test_stats(self, client):
        at = datetime(2024, 6, 1, tzinfo=timezone.utc)
        seed("a", LogLevel.ERROR, at)
        seed("b", LogLevel.INFO, at)

        response = client.get(
            "/api/logs/stats",
            params={"start_date": at.isoformat(), "end_date": at.isoformat()},
            headers=ADMIN_HEADERS,
        )

        assert response.status_code == 200
        stats = response.json()["stats"]
        assert stats["total"] == 2
        assert stats["errors"] == 1
        assert stats["by_level"] == {"error": 1, "info": 1}
        assert stats["by_category"] == {"business": 2}


class TestCleanup:

    def test_cleanup(self, client):
        now = datetime.now(timezone.utc)
        seed("ancient", LogLevel.INFO, now - timedelta(days=40))
        seed("recent", LogLevel.INFO, now - timedelta(days=1))

        response = client.delete("/api/logs/cleanup?days_to_keep=30", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert data["deleted_count"] == 1
        assert data["message"] == "Deleted 1 logs older than 30 days"

        again = client.delete("/api/logs/cleanup?days_to_keep=30", headers=ADMIN_HEADERS)
        assert again.json()["deleted_count"] == 0

    def test_cleanup_uses_configured_retention(self, client):
        seed("ancient", LogLevel.INFO, datetime.now(timezone.utc) - timedelta(days=100))

        response = client.delete("/api/logs/cleanup", headers=ADMIN_HEADERS)

        assert response.json()["deleted_count"] == 1
        assert "90 days" in response.json()["message"]

    @pytest.mark.parametrize("days", ["0", "366", "-3", "ten"])
    def test_invalid_days(self, client, days):
        response = client.delete(f"/api/logs/cleanup?days_to_keep={days}", headers=ADMIN_HEADERS)

        assert response.status_code == 400

    def test_cleanup_requires_admin(self, client):
        response = client.delete(
            "/api/logs/cleanup", headers={"X-Wallet-Address": EMPLOYER}
        )

        assert response.status_code == 403


class TestEnumerations:

    def test_levels(self, client):
        data = client.get("/api/logs/levels", headers=ADMIN_HEADERS).json()

        assert data["levels"] == ["info", "warn", "error", "debug", "success", "security"]

    def test_categories(self, client):
        data = client.get("/api/logs/categories", headers=ADMIN_HEADERS).json()

        assert data["categories"] == ["http", "database", "blockchain", "auth", "system", "business"]
