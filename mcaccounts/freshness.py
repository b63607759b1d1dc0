"""Token freshness classification."""

from enum import Enum

from mcaccounts.models import Account

# Treat tokens as expired this many seconds early so a request started just
# before expiry does not reach the API with a dead token.
DEFAULT_SKEW = 60


class TokenState(str, Enum):
    FRESH = "fresh"
    REFRESHABLE = "refreshable"
    DEAD = "dead"


def classify(account: Account, now: float, skew: int = DEFAULT_SKEW) -> TokenState:
    """Decide whether an account's access token can be used as-is.

    Pure function of the account and ``now`` (epoch seconds).

    >>> a = Account(uuid="u", username="n", access_token="t", refresh_token="r", expires_at=1000)
    >>> classify(a, now=900).value
    'fresh'
    >>> classify(a, now=950).value
    'refreshable'
    >>> classify(a.model_copy(update={"refresh_token": None}), now=2000).value
    'dead'
    """
    if now < account.expires_at - skew:
        return TokenState.FRESH
    if account.refresh_token:
        return TokenState.REFRESHABLE
    return TokenState.DEAD
