"""Public account operations used by the launcher's commands.

Downstream features (skin upload, capes, server status, profile queries)
call get_active_account() and then get_valid_token(uuid) right before their
own authenticated request. ReauthenticationRequired from here means "ask the
user to sign in again", never "retry".
"""

import logging
import threading
import time
from typing import Callable, Optional

from mcaccounts.config import AccountsConfig
from mcaccounts.errors import AccountNotFound, ReauthenticationRequired
from mcaccounts.freshness import TokenState, classify
from mcaccounts.gate import MutationGate
from mcaccounts.models import Account, AccountStore, AccountSummary, utcnow
from mcaccounts.refresh import Exchange, RefreshCoordinator
from mcaccounts.token_recovery import apply_token_recovery

logger = logging.getLogger("mcaccounts.manager")


class AccountManager:
    """Facade over the account store, the mutation gate and token refresh.

    >>> import tempfile; from pathlib import Path
    >>> m = AccountManager(AccountsConfig(data_dir=Path(tempfile.mkdtemp())))
    >>> m.get_active_account() is None
    True
    >>> m.get_all_accounts()
    []
    """

    def __init__(
        self,
        config: Optional[AccountsConfig] = None,
        *,
        exchange: Optional[Exchange] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or AccountsConfig.from_env()
        self.gate = MutationGate(self.config.accounts_file)
        self.refresher = RefreshCoordinator(
            self.gate, self.config, exchange=exchange, clock=clock
        )
        self._clock = clock

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_account(
        self,
        uuid: str,
        username: str,
        access_token: str,
        refresh_token: Optional[str],
        expires_at: int,
    ) -> Account:
        """Insert or overwrite an account after sign-in.

        Re-adding an existing uuid replaces its tokens but keeps its
        original added_at. The first account added becomes active.
        """

        def _apply(store: AccountStore) -> tuple[AccountStore, Account]:
            existing = store.accounts.get(uuid)
            now = utcnow()
            account = Account(
                uuid=uuid,
                username=username,
                access_token=access_token,
                refresh_token=refresh_token,
                expires_at=expires_at,
                added_at=existing.added_at if existing else now,
                last_used=now,
            )
            store.put(account)
            return store, account.model_copy()

        account = self.gate.with_store_mut(_apply)
        logger.info("Added account %s (%s)", uuid, username)
        return account

    def remove_account(self, uuid: str) -> bool:
        """Delete an account. No error if it does not exist.

        Returns True if something was removed.
        """

        def _apply(store: AccountStore) -> tuple[AccountStore, bool]:
            return store, store.discard(uuid)

        removed = self.gate.with_store_mut(_apply)
        if removed:
            logger.info("Removed account %s", uuid)
        return removed

    def set_active_account(self, uuid: str) -> Account:
        """Select ``uuid`` for authenticated operations and touch its last_used."""

        def _apply(store: AccountStore) -> tuple[AccountStore, Account]:
            if uuid not in store.accounts:
                raise AccountNotFound(
                    "account does not exist", uuid=uuid, operation="set_active_account"
                )
            return store, store.activate(uuid).model_copy()

        account = self.gate.with_store_mut(_apply)
        logger.info("Active account is now %s (%s)", uuid, account.username)
        return account

    def update_username(self, uuid: str, username: str) -> Account:
        """Rename an account (the provider-side name changed)."""

        def _apply(store: AccountStore) -> tuple[AccountStore, Account]:
            account = store.accounts.get(uuid)
            if account is None:
                raise AccountNotFound(
                    "account does not exist", uuid=uuid, operation="update_username"
                )
            account.username = username
            return store, account.model_copy()

        return self.gate.with_store_mut(_apply)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_active_account(self) -> Optional[Account]:
        return self.gate.snapshot().active_account

    def get_account(self, uuid: str) -> Optional[Account]:
        return self.gate.snapshot().accounts.get(uuid)

    def account_exists(self, uuid: str) -> bool:
        return uuid in self.gate.snapshot().accounts

    def get_all_accounts(self) -> list[AccountSummary]:
        """Non-secret summaries, most recently used first."""
        return self.gate.snapshot().summaries()

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    async def get_valid_token(self, uuid: str) -> str:
        """Return an access token for ``uuid`` that is safe to use right now.

        Fresh tokens come straight from memory. Stale ones are refreshed
        (joining any refresh already running for this account). Raises
        ReauthenticationRequired when the account has to sign in again.
        """
        account = self.get_account(uuid)
        if account is None:
            raise AccountNotFound("account does not exist", uuid=uuid, operation="get_valid_token")

        state = classify(account, self._clock(), self.config.expiry_skew)
        if state is TokenState.FRESH:
            return account.access_token
        if state is TokenState.DEAD:
            raise ReauthenticationRequired(
                "access token expired and cannot be refreshed; sign in again",
                uuid=uuid, operation="get_valid_token",
            )

        refreshed = await self.refresher.refresh(uuid)
        return refreshed.access_token

    async def get_active_token(self) -> tuple[Account, str]:
        """Active account plus a valid token for it.

        Raises AccountNotFound when no account is active.
        """
        account = self.get_active_account()
        if account is None:
            raise AccountNotFound(
                "no active account; sign in first", operation="get_active_token"
            )
        token = await self.get_valid_token(account.uuid)
        return account, token

    async def refresh_expiring_tokens(self, buffer_seconds: Optional[int] = None) -> dict:
        return await self.refresher.refresh_expiring(buffer_seconds)

    def apply_token_recovery(self) -> bool:
        """Patch in tokens left behind by a refresh whose save failed last run."""
        return apply_token_recovery(self.gate, self.config.recovery_file)


# ---------------------------------------------------------------------------
# Process-wide instance
# ---------------------------------------------------------------------------

_manager: Optional[AccountManager] = None
_manager_lock = threading.Lock()


def get_manager() -> AccountManager:
    """Lazily create the single AccountManager for this process."""
    global _manager
    with _manager_lock:
        if _manager is None:
            _manager = AccountManager()
            _manager.apply_token_recovery()
        return _manager


def reset_manager() -> None:
    """Drop the process-wide instance (tests, config changes)."""
    global _manager
    with _manager_lock:
        _manager = None
