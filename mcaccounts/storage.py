"""Account file persistence with atomic writes.

The account file is never modified in place: every save writes the whole
store to a temp file in the same directory and renames it over the canonical
path, so readers (and a process that crashes mid-save) only ever see a
complete file.
"""

import json
import logging
import os
import sys
import tempfile
import time
from pathlib import Path

from pydantic import ValidationError

from mcaccounts.errors import IoFailure, StoreCorrupt
from mcaccounts.models import AccountStore

logger = logging.getLogger("mcaccounts.storage")


def _safe_replace(src: str, dst: str, *, retries: int = 3, delay: float = 0.1):
    """os.replace() with retry for Windows PermissionError.

    On Windows, os.replace() can fail if the target file is held open
    by another process (antivirus, the launcher UI reading it).
    On macOS/Linux, this is equivalent to a single os.replace() call.
    """
    for attempt in range(retries):
        try:
            os.replace(src, dst)
            return
        except PermissionError:
            if sys.platform != "win32" or attempt == retries - 1:
                raise
            time.sleep(delay * (2 ** attempt))


def write_json_atomic(path: Path, data: dict, *, prefix: str = ".accounts_tmp_") -> None:
    """Write JSON to ``path`` via temp file + rename with 0o600 permissions.

    Raises OSError on failure; the temp file is removed and the existing
    file at ``path`` is left untouched.
    """
    if path.is_symlink():
        raise OSError(f"Refusing to write through symlink: {path}")
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=str(path.parent), prefix=prefix, suffix=".json")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        try:
            os.chmod(tmp, 0o600)
        except OSError:
            pass
        _safe_replace(tmp, str(path))
    except Exception:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


def load_store(path: Path) -> AccountStore:
    """Read the account store from ``path``.

    A missing file is an empty store. Anything that is present but unusable
    raises StoreCorrupt rather than being reset, since resetting would throw
    away every stored credential.

    >>> load_store(Path("/nonexistent/accounts.json")).accounts
    {}
    """
    try:
        if not path.exists():
            return AccountStore()
        raw = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise StoreCorrupt(f"account file is not valid UTF-8: {e}", operation="load") from e
    except OSError as e:
        raise IoFailure(f"cannot read {path}: {e}", operation="load") from e

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise StoreCorrupt(f"{path} is not valid JSON: {e}", operation="load") from e

    if not isinstance(data, dict):
        raise StoreCorrupt(f"{path} does not contain a JSON object", operation="load")

    try:
        store = AccountStore.model_validate(data)
    except ValidationError as e:
        raise StoreCorrupt(
            f"{path} has invalid account data: {e.error_count()} error(s)",
            operation="load",
        ) from e

    if store.repair_active_pointer():
        logger.warning("Active account in %s no longer exists, clearing selection", path)

    return store


def save_store(path: Path, store: AccountStore) -> None:
    """Persist the full store atomically. Raises IoFailure on any OS error."""
    try:
        write_json_atomic(path, store.model_dump(mode="json"))
    except OSError as e:
        raise IoFailure(f"cannot write {path}: {e}", operation="save") from e
    logger.debug("Saved %d account(s) to %s", len(store.accounts), path)
