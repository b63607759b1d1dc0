"""Error taxonomy for account and token operations.

Every failure surfaced by the account manager is one of these. Each carries
the account uuid and the operation name so callers can tell "no such account"
from "credential expired" from "storage unavailable".
"""

from typing import Optional


class AccountError(Exception):
    """Base class for all account-manager failures."""

    code = "ACCOUNT_ERROR"
    retryable = False

    def __init__(
        self,
        message: str,
        *,
        uuid: Optional[str] = None,
        operation: Optional[str] = None,
    ):
        self.message = message
        self.uuid = uuid
        self.operation = operation
        super().__init__(self._format())

    def _format(self) -> str:
        """Prefix the message with operation/account context.

        >>> str(AccountNotFound("no such account", uuid="u1", operation="set_active_account"))
        'set_active_account [u1]: no such account'
        >>> str(AccountError("boom"))
        'boom'
        """
        prefix = self.operation or ""
        if self.uuid:
            prefix = f"{prefix} [{self.uuid}]" if prefix else f"[{self.uuid}]"
        return f"{prefix}: {self.message}" if prefix else self.message

    def to_dict(self) -> dict:
        """Serialize for API error envelopes.

        >>> IoFailure("disk full", operation="save").to_dict()["code"]
        'IO_FAILURE'
        """
        return {
            "message": self.message,
            "code": self.code,
            "detail": {
                "uuid": self.uuid,
                "operation": self.operation,
                "retryable": self.retryable,
            },
        }


class StoreCorrupt(AccountError):
    """The account file exists but cannot be parsed. Never auto-reset."""

    code = "STORE_CORRUPT"


# The load contract calls this failure CorruptStore; both names are public.
CorruptStore = StoreCorrupt


class IoFailure(AccountError):
    """Reading or writing the account file failed (permissions, disk full)."""

    code = "IO_FAILURE"
    retryable = True


class AccountNotFound(AccountError):
    code = "ACCOUNT_NOT_FOUND"


class NetworkFailure(AccountError):
    """Transient failure talking to the identity provider."""

    code = "NETWORK_FAILURE"
    retryable = True

    def __init__(self, message: str, *, status_code: Optional[int] = None, **kwargs):
        self.status_code = status_code
        super().__init__(message, **kwargs)


class MalformedResponse(NetworkFailure):
    """Provider answered 200 but the body was not a usable token response."""

    code = "MALFORMED_RESPONSE"


class ReauthenticationRequired(AccountError):
    """The stored credential can no longer be used or refreshed.

    The user has to go through sign-in again; retrying will not help.
    """

    code = "REAUTH_REQUIRED"


class InvalidRefreshToken(ReauthenticationRequired):
    """Provider rejected the refresh token (invalid_grant / revoked)."""

    code = "INVALID_REFRESH_TOKEN"
