"""
mc-accounts - Account and token lifecycle manager for a multi-account game launcher.

Keeps a persisted store of signed-in accounts, tracks the active one, and
hands out access tokens that are guaranteed fresh, refreshing them through
the identity provider at most once per account at a time.
"""

__version__ = "0.3.0"

from mcaccounts.errors import (  # noqa: E402
    AccountError,
    AccountNotFound,
    CorruptStore,
    InvalidRefreshToken,
    IoFailure,
    MalformedResponse,
    NetworkFailure,
    ReauthenticationRequired,
    StoreCorrupt,
)
from mcaccounts.manager import AccountManager, get_manager  # noqa: E402

__all__ = [
    "__version__",
    "AccountError",
    "AccountManager",
    "AccountNotFound",
    "CorruptStore",
    "InvalidRefreshToken",
    "IoFailure",
    "MalformedResponse",
    "NetworkFailure",
    "ReauthenticationRequired",
    "StoreCorrupt",
    "get_manager",
]
