"""Wallet-based authorization checks.

Callers identify themselves with the ``X-Wallet-Address`` header. These checks
only compare addresses; signature verification is out of scope. Failed
checks raise WalletAuthError carrying the HTTP status to answer with.
"""

from packages.paystream_errors import PayStreamError
from packages.schemas.streams import is_valid_address


class WalletAuthError(PayStreamError):
    """Raised when a wallet check fails."""

    def __init__(self, status_code: int, message: str, user_address: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.user_address = user_address


def normalize_wallet(value: str | None) -> str | None:
    """Lowercase a wallet header value; blank becomes None."""
    if value is None or not value.strip():
        return None
    return value.strip().lower()


def require_wallet(value: str | None) -> str:
    """
    Resolve the calling wallet.

    Returns:
        Lowercased wallet address

    Raises:
        WalletAuthError: 401 if missing or malformed
    """
    wallet = normalize_wallet(value)
    if wallet is None or not is_valid_address(wallet):
        raise WalletAuthError(
            401, "Wallet address required. Send X-Wallet-Address header."
        )
    return wallet


def check_ownership(caller: str, *owners: str) -> None:
    """
    Ensure the caller is one of the resource owners.

    Raises:
        WalletAuthError: 403 if the caller owns none of them
    """
    if caller not in {owner.lower() for owner in owners if owner}:
        raise WalletAuthError(403, "You can only access your own data", user_address=caller)


def check_admin(caller: str | None, admin_address: str | None) -> str:
    """
    Ensure the caller is the configured admin wallet.

    Returns:
        The admin wallet

    Raises:
        WalletAuthError: 500 if no admin is configured, 401 if no wallet was
            sent, 403 if the wallet is not the admin
    """
    if not admin_address:
        raise WalletAuthError(500, "Admin address not configured")
    caller = normalize_wallet(caller)
    if caller is None:
        raise WalletAuthError(401, "Wallet address required")
    if caller != admin_address.lower():
        raise WalletAuthError(403, "Unauthorized: Admin access only", user_address=caller)
    return caller


__all__ = [
    "WalletAuthError",
    "check_admin",
    "check_ownership",
    "normalize_wallet",
    "require_wallet",
]
