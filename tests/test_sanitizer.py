"""
Tests for redaction of audit record details.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from uuid import UUID

import pytest

from packages.audit_store.sanitizer import REDACTED, is_sensitive_key, sanitize, to_jsonable


class Color(str, Enum):
    RED = "red"


class TestIsSensitiveKey:

    @pytest.mark.parametrize(
        "key",
        ["password", "userPassword", "client_secret", "privateKey", "PRIVATE_KEY", "apiKey", "accessToken"],
    )
    def test_sensitive(self, key):
        assert is_sensitive_key(key)

    @pytest.mark.parametrize("key", ["stream_id", "employer_address", "monthly_salary"])
    def test_not_sensitive(self, key):
        assert not is_sensitive_key(key)


class TestSanitize:

    def test_redacts_top_level(self):
        assert sanitize({"password": "p", "ok": "v"}) == {"password": REDACTED, "ok": "v"}

    def test_redacts_nested(self):
        data = {"outer": {"token": "t", "items": [{"secret": "s", "n": 1}]}}

        assert sanitize(data) == {"outer": {"token": REDACTED, "items": [{"secret": REDACTED, "n": 1}]}}

    def test_does_not_mutate_input(self):
        data = {"password": "p"}
        sanitize(data)
        assert data == {"password": "p"}

    def test_non_dict_passthrough(self):
        assert sanitize("text") == "text"
        assert sanitize(None) is None


class TestToJsonable:

    def test_coerces_values(self):
        value = {
            "amount": Decimal("1.50"),
            "id": UUID("12345678-1234-5678-1234-567812345678"),
            "at": datetime(2024, 1, 1, tzinfo=timezone.utc),
            "color": Color.RED,
            "pair": ("a", "b"),
        }

        assert to_jsonable(value) == {
            "amount": "1.50",
            "id": "12345678-1234-5678-1234-567812345678",
            "at": "2024-01-01T00:00:00+00:00",
            "color": "red",
            "pair": ["a", "b"],
        }

    def test_unknown_objects_become_strings(self):
        class Thing:
            def __str__(self):
                return "thing"

        assert to_jsonable(Thing()) == "thing"
