"""
Integration tests for the stream API endpoints.
"""

import pytest
from fastapi.testclient import TestClient

import apps.paystream_api.main as api
from apps.paystream_api.main import app
from packages.audit_store import LogCategory
from packages.paystream_config import reset_paystream_config

EMPLOYER = "0x" + "a" * 40
EMPLOYEE = "0x" + "b" * 40
STRANGER = "0x" + "c" * 40
ADMIN = "0x" + "d" * 40


def wallet(address: str) -> dict:
    return {"X-Wallet-Address": address}


def create_body(**overrides) -> dict:
    body = {
        "employer_address": EMPLOYER,
        "employee_address": EMPLOYEE,
        "monthly_salary": "1000",
        "rate_per_second": "0.000385",
        "duration_months": 12,
        "tax_percent": 10,
        "start_time": 1717200000,
        "end_time": 1748736000,
        "creation_tx_hash": "0xcreate",
    }
    body.update(overrides)
    return body


@pytest.fixture
def client(tmp_path, monkeypatch):
    """Test client backed by temporary databases with synchronous audit writes."""
    monkeypatch.setenv("PAYSTREAM_STREAMS_DB_PATH", str(tmp_path / "streams.db"))
    monkeypatch.setenv("PAYSTREAM_AUDIT_DB_PATH", str(tmp_path / "audit.db"))
    monkeypatch.setenv("PAYSTREAM_EMPLOYEES_DB_PATH", str(tmp_path / "employees.db"))
    monkeypatch.setenv("PAYSTREAM_ADMIN_ADDRESS", ADMIN)
    monkeypatch.setenv("PAYSTREAM_AUDIT_ASYNC", "false")
    reset_paystream_config()

    with TestClient(app) as test_client:
        yield test_client

    reset_paystream_config()


@pytest.fixture
def created(client):
    response = client.post("/api/streams", json=create_body(), headers=wallet(EMPLOYER))
    assert response.status_code == 201
    return response.json()["stream"]


class TestHealth:

    def test_health(self, client):
        response = client.get("/api/health")

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert "timestamp" in data
        assert "x-request-id" in response.headers


class TestServiceAvailability:

    def test_uninitialized_controller_uses_error_envelope(self, client, monkeypatch):
        monkeypatch.setattr(api, "stream_controller", None)

        response = client.get(f"/api/streams/{EMPLOYER}", headers=wallet(EMPLOYER))

        assert response.status_code == 503
        assert response.json() == {
            "success": False,
            "error": "Stream controller not initialized",
        }


class TestCreateStream:

    def test_create(self, client):
        response = client.post("/api/streams", json=create_body(), headers=wallet(EMPLOYER))

        assert response.status_code == 201
        data = response.json()
        assert data["success"] is True
        assert data["stream"]["status"] == "active"
        assert data["stream"]["paused"] is False
        assert data["stream"]["withdrawn"] == "0"
        assert data["stream"]["employer_address"] == EMPLOYER

    def test_repeat_create_conflicts(self, client, created):
        response = client.post("/api/streams", json=create_body(), headers=wallet(EMPLOYER))

        assert response.status_code == 409
        data = response.json()
        assert data["success"] is False
        assert data["error"] == "Active stream already exists for this employee"
        assert data["stream"]["id"] == created["id"]

        listing = client.get(f"/api/streams/{EMPLOYER}", headers=wallet(EMPLOYER)).json()
        assert listing["count"] == 1

    def test_mixed_case_addresses_are_one_pair(self, client, created):
        body = create_body(employer_address="0x" + "A" * 40)

        response = client.post("/api/streams", json=body, headers=wallet(EMPLOYER))

        assert response.status_code == 409

    def test_requires_wallet(self, client):
        response = client.post("/api/streams", json=create_body())

        assert response.status_code == 401
        assert response.json()["success"] is False

    def test_only_employer_may_create(self, client):
        response = client.post("/api/streams", json=create_body(), headers=wallet(EMPLOYEE))

        assert response.status_code == 403

    @pytest.mark.parametrize(
        "overrides",
        [
            {"employer_address": "0x123"},
            {"employee_address": "not-an-address"},
            {"monthly_salary": "abc"},
            {"monthly_salary": "-5"},
            {"duration_months": 0},
            {"tax_percent": 101},
            {"end_time": 2**63},
            {"duration_months": 2**63},
            {"unexpected": "field"},
        ],
    )
    def test_invalid_body(self, client, overrides):
        response = client.post(
            "/api/streams", json=create_body(**overrides), headers=wallet(EMPLOYER)
        )

        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_missing_field(self, client):
        body = create_body()
        del body["rate_per_second"]

        response = client.post("/api/streams", json=body, headers=wallet(EMPLOYER))

        assert response.status_code == 400

    def test_create_is_audited(self, client, created):
        page = api.log_engine.query({"categories": ["business"]})

        [record] = page.records
        assert record.message == "Salary stream created"
        assert record.details["stream_id"] == created["id"]


class TestReadStreams:

    def test_get_as_employer(self, client, created):
        response = client.get(f"/api/streams/{EMPLOYER}/{EMPLOYEE}", headers=wallet(EMPLOYER))

        assert response.status_code == 200
        assert response.json()["stream"]["id"] == created["id"]

    def test_get_as_employee(self, client, created):
        response = client.get(f"/api/streams/{EMPLOYER}/{EMPLOYEE}", headers=wallet(EMPLOYEE))

        assert response.status_code == 200

    def test_get_as_stranger(self, client, created):
        response = client.get(f"/api/streams/{EMPLOYER}/{EMPLOYEE}", headers=wallet(STRANGER))

        assert response.status_code == 403

    def test_denied_access_is_audited(self, client, created):
        client.get(f"/api/streams/{EMPLOYER}/{EMPLOYEE}", headers=wallet(STRANGER))

        page = api.log_engine.query({"categories": [LogCategory.AUTH.value]})
        assert [r.user_address for r in page.records] == [STRANGER]
        assert page.records[0].level.value == "warn"

    def test_get_missing(self, client):
        response = client.get(f"/api/streams/{EMPLOYER}/{EMPLOYEE}", headers=wallet(EMPLOYER))

        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "Stream not found"}

    def test_invalid_path_address(self, client):
        response = client.get("/api/streams/0x123", headers=wallet(EMPLOYER))

        assert response.status_code == 400

    def test_list_with_status_filter(self, client, created):
        other = "0x" + "e" * 40
        client.post(
            "/api/streams", json=create_body(employee_address=other), headers=wallet(EMPLOYER)
        )
        client.patch(
            f"/api/streams/{EMPLOYER}/{EMPLOYEE}/cancel", json={}, headers=wallet(EMPLOYER)
        )

        everything = client.get(f"/api/streams/{EMPLOYER}", headers=wallet(EMPLOYER)).json()
        cancelled = client.get(
            f"/api/streams/{EMPLOYER}?status=cancelled", headers=wallet(EMPLOYER)
        ).json()

        assert everything["count"] == 2
        assert [s["id"] for s in cancelled["streams"]] == [created["id"]]

    def test_list_invalid_status(self, client):
        response = client.get(f"/api/streams/{EMPLOYER}?status=done", headers=wallet(EMPLOYER))

        assert response.status_code == 400

    def test_list_other_employer(self, client):
        response = client.get(f"/api/streams/{EMPLOYER}", headers=wallet(EMPLOYEE))

        assert response.status_code == 403


class TestTransitions:

    def test_pause_resume_cancel(self, client, created):
        base = f"/api/streams/{EMPLOYER}/{EMPLOYEE}"

        paused = client.patch(f"{base}/status", json={"paused": True}, headers=wallet(EMPLOYER))
        assert paused.status_code == 200
        assert paused.json()["stream"]["status"] == "paused"
        assert paused.json()["stream"]["paused"] is True

        resumed = client.patch(f"{base}/status", json={"paused": False}, headers=wallet(EMPLOYER))
        assert resumed.json()["stream"]["status"] == "active"

        cancelled = client.patch(
            f"{base}/cancel",
            json={"cancellation_tx_hash": "0xcancel"},
            headers=wallet(EMPLOYER),
        )
        assert cancelled.status_code == 200
        assert cancelled.json()["stream"]["status"] == "cancelled"
        assert cancelled.json()["stream"]["cancellation_tx_hash"] == "0xcancel"

        again = client.patch(f"{base}/status", json={"paused": True}, headers=wallet(EMPLOYER))
        assert again.status_code == 404

    def test_employee_cannot_pause(self, client, created):
        response = client.patch(
            f"/api/streams/{EMPLOYER}/{EMPLOYEE}/status",
            json={"paused": True},
            headers=wallet(EMPLOYEE),
        )

        assert response.status_code == 403

    def test_status_requires_boolean(self, client, created):
        response = client.patch(
            f"/api/streams/{EMPLOYER}/{EMPLOYEE}/status",
            json={"paused": "maybe"},
            headers=wallet(EMPLOYER),
        )

        assert response.status_code == 400

    def test_cancel_twice(self, client, created):
        url = f"/api/streams/{EMPLOYER}/{EMPLOYEE}/cancel"
        client.patch(url, json={}, headers=wallet(EMPLOYER))

        response = client.patch(url, json={}, headers=wallet(EMPLOYER))

        assert response.status_code == 404


class TestSync:

    def test_sync_withdrawn_by_employee(self, client, created):
        response = client.patch(
            f"/api/streams/{EMPLOYER}/{EMPLOYEE}/sync",
            json={"withdrawn": "500"},
            headers=wallet(EMPLOYEE),
        )

        assert response.status_code == 200
        stream = response.json()["stream"]
        assert stream["withdrawn"] == "500"
        assert stream["status"] == "active"
        assert stream["paused"] is False

    def test_sync_paused(self, client, created):
        response = client.patch(
            f"/api/streams/{EMPLOYER}/{EMPLOYEE}/sync",
            json={"paused": True},
            headers=wallet(EMPLOYER),
        )

        assert response.json()["stream"]["status"] == "paused"

    def test_sync_invalid_withdrawn(self, client, created):
        response = client.patch(
            f"/api/streams/{EMPLOYER}/{EMPLOYEE}/sync",
            json={"withdrawn": "lots"},
            headers=wallet(EMPLOYER),
        )

        assert response.status_code == 400

    def test_sync_missing_stream(self, client):
        response = client.patch(
            f"/api/streams/{EMPLOYER}/{EMPLOYEE}/sync",
            json={"withdrawn": "1"},
            headers=wallet(EMPLOYER),
        )

        assert response.status_code == 404
