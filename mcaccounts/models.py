"""Pydantic v2 models for accounts and the persisted account store."""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Account(BaseModel):
    """One authenticated identity as stored on disk.

    >>> a = Account(uuid="u1", username="Alice", access_token="tok", expires_at=0)
    >>> a.refresh_token is None
    True
    >>> a.last_used is None
    True
    """

    uuid: str
    username: str
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: int
    added_at: datetime = Field(default_factory=utcnow)
    last_used: Optional[datetime] = None

    @field_validator("added_at", "last_used")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        # Naive timestamps from hand-edited files are treated as UTC
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class AccountSummary(BaseModel):
    """Non-secret projection of an account for listings."""

    uuid: str
    username: str
    is_active: bool
    added_at: datetime
    last_used: Optional[datetime] = None


class AccountStore(BaseModel):
    """All accounts plus the active-account pointer.

    If ``active_account_uuid`` is set it references a key of ``accounts``;
    every method that changes either field keeps that true.

    >>> s = AccountStore()
    >>> s.put(Account(uuid="u1", username="A", access_token="t", expires_at=0))
    >>> s.active_account_uuid
    'u1'
    >>> s.discard("u1")
    True
    >>> s.active_account_uuid is None
    True
    """

    accounts: dict[str, Account] = Field(default_factory=dict)
    active_account_uuid: Optional[str] = None

    @property
    def active_account(self) -> Optional[Account]:
        if self.active_account_uuid is None:
            return None
        return self.accounts.get(self.active_account_uuid)

    def put(self, account: Account) -> None:
        """Insert or overwrite; the first account in an empty selection becomes active."""
        self.accounts[account.uuid] = account
        if self.active_account_uuid is None:
            self.active_account_uuid = account.uuid

    def discard(self, uuid: str) -> bool:
        """Remove an account, moving the active pointer if it pointed here.

        The pointer moves to the most recently used remaining account
        (insertion order among never-used ones), or to None.
        """
        removed = self.accounts.pop(uuid, None) is not None
        if self.active_account_uuid == uuid:
            remaining = self.ordered_accounts()
            self.active_account_uuid = remaining[0].uuid if remaining else None
        return removed

    def activate(self, uuid: str, when: Optional[datetime] = None) -> Account:
        """Make ``uuid`` active and touch its last_used. KeyError if absent."""
        account = self.accounts[uuid]
        account.last_used = when or utcnow()
        self.active_account_uuid = uuid
        return account

    def ordered_accounts(self) -> list[Account]:
        """Accounts by last_used descending, never-used ones after, ties stable."""
        used = [a for a in self.accounts.values() if a.last_used is not None]
        unused = [a for a in self.accounts.values() if a.last_used is None]
        used.sort(key=lambda a: a.last_used, reverse=True)
        return used + unused

    def summaries(self) -> list[AccountSummary]:
        return [
            AccountSummary(
                uuid=a.uuid,
                username=a.username,
                is_active=a.uuid == self.active_account_uuid,
                added_at=a.added_at,
                last_used=a.last_used,
            )
            for a in self.ordered_accounts()
        ]

    def repair_active_pointer(self) -> bool:
        """Clear a dangling active pointer. Returns True if it had to."""
        if (
            self.active_account_uuid is not None
            and self.active_account_uuid not in self.accounts
        ):
            self.active_account_uuid = None
            return True
        return False
