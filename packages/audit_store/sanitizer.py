"""Redaction of sensitive values in audit record details.

Audit details are free-form maps supplied by any subsystem. Before a record is
stored, keys that look like credentials are masked and values are coerced to
JSON-safe primitives so that the stored text is exactly what queries search.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

REDACTED = "[REDACTED]"

# Substrings matched against lowercased keys
SENSITIVE_KEY_PARTS = (
    "password",
    "secret",
    "privatekey",
    "private_key",
    "apikey",
    "api_key",
    "token",
)


def is_sensitive_key(key: str) -> bool:
    """Check whether a details key names a credential."""
    key_lower = key.lower()
    return any(part in key_lower for part in SENSITIVE_KEY_PARTS)


def to_jsonable(value: Any) -> Any:
    """Coerce a value to a JSON-serializable primitive structure."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Enum):
        return to_jsonable(value.value)
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_jsonable(item) for item in value]
    if hasattr(value, "model_dump"):
        return to_jsonable(value.model_dump(mode="json"))
    return str(value)


def sanitize(data: Any) -> Any:
    """Return a redacted, JSON-safe copy of ``data``.

    Args:
        data: Details map (or any nested structure)

    Returns:
        Copy with credential-like keys replaced by ``[REDACTED]``
    """
    data = to_jsonable(data)

    if isinstance(data, dict):
        return {
            key: REDACTED if is_sensitive_key(key) else sanitize(value)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [sanitize(item) for item in data]
    return data


__all__ = ["REDACTED", "is_sensitive_key", "sanitize", "to_jsonable"]
