"""
Tests for wallet authorization checks.
"""

import pytest

from packages.paystream_errors import PayStreamError
from packages.wallet_auth import (
    WalletAuthError,
    check_admin,
    check_ownership,
    normalize_wallet,
    require_wallet,
)

EMPLOYER = "0x" + "a" * 40
EMPLOYEE = "0x" + "b" * 40
ADMIN = "0x" + "d" * 40


class TestRequireWallet:

    def test_valid_wallet_lowercased(self):
        assert require_wallet("0x" + "A" * 40) == EMPLOYER

    @pytest.mark.parametrize("value", [None, "", "   ", "0x123", "abc", "0x" + "g" * 40])
    def test_missing_or_malformed(self, value):
        with pytest.raises(WalletAuthError) as exc_info:
            require_wallet(value)

        assert exc_info.value.status_code == 401

    def test_is_domain_error(self):
        with pytest.raises(PayStreamError):
            require_wallet(None)


class TestCheckOwnership:

    def test_owner_allowed(self):
        check_ownership(EMPLOYEE, EMPLOYER, EMPLOYEE)

    def test_owner_case_insensitive(self):
        check_ownership(EMPLOYER, "0x" + "A" * 40)

    def test_stranger_rejected(self):
        stranger = "0x" + "c" * 40

        with pytest.raises(WalletAuthError) as exc_info:
            check_ownership(stranger, EMPLOYER)

        assert exc_info.value.status_code == 403
        assert exc_info.value.user_address == stranger


class TestCheckAdmin:

    def test_admin_allowed(self):
        assert check_admin(ADMIN.upper().replace("0X", "0x"), ADMIN) == ADMIN

    def test_not_configured(self):
        with pytest.raises(WalletAuthError) as exc_info:
            check_admin(ADMIN, None)

        assert exc_info.value.status_code == 500

    def test_no_wallet(self):
        with pytest.raises(WalletAuthError) as exc_info:
            check_admin(None, ADMIN)

        assert exc_info.value.status_code == 401

    def test_not_admin(self):
        with pytest.raises(WalletAuthError) as exc_info:
            check_admin(EMPLOYER, ADMIN)

        assert exc_info.value.status_code == 403


def test_normalize_wallet():
    assert normalize_wallet("  0xAB ") == "0xab"
    assert normalize_wallet("") is None
    assert normalize_wallet(None) is None
