"""Mutation gate: serialized read-modify-write over the account store.

Every change to the store goes through ``with_store_mut`` so two commands
running at the same time (say, switching the active account while a token
refresh commits) cannot each load a stale copy and overwrite each other.
"""

import logging
import threading
from pathlib import Path
from typing import Callable, Optional, TypeVar

from mcaccounts.models import AccountStore
from mcaccounts.storage import load_store, save_store

logger = logging.getLogger("mcaccounts.gate")

R = TypeVar("R")


class MutationGate:
    """Single process-wide exclusive section around the account store.

    The committed store is cached in memory after the first load. A mutation
    works on a deep copy; the copy only replaces the cache after it has been
    written to disk, so a failed save leaves memory and disk in agreement.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._store: Optional[AccountStore] = None

    def _current(self) -> AccountStore:
        # Caller must hold self._lock
        if self._store is None:
            self._store = load_store(self.path)
            logger.debug(
                "Loaded %d account(s) from %s", len(self._store.accounts), self.path
            )
        return self._store

    def with_store_mut(self, fn: Callable[[AccountStore], tuple[AccountStore, R]]) -> R:
        """Run ``fn`` on the current store and persist what it returns.

        ``fn`` receives a private copy and returns ``(new_store, result)``.
        Other callers block until this one has saved or failed. Any exception
        from loading, from ``fn`` or from saving propagates with the in-memory
        store unchanged.
        """
        with self._lock:
            working = self._current().model_copy(deep=True)
            new_store, result = fn(working)
            save_store(self.path, new_store)
            self._store = new_store
            return result

    def snapshot(self) -> AccountStore:
        """Copy of the last committed store; never a half-applied mutation."""
        with self._lock:
            return self._current().model_copy(deep=True)

    def reload(self) -> None:
        """Forget the cached store; the next access re-reads the file."""
        with self._lock:
            self._store = None
