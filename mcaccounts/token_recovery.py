"""Crash-safe persistence of freshly refreshed tokens.

Refresh tokens rotate: once the provider has answered a refresh, the old
refresh token is spent. If saving the new tokens to the account file then
fails (disk full, permissions), they would be lost and the account would need
a full sign-in. To avoid that, the new tokens are written to a separate
recovery file. On next startup apply_token_recovery() patches them into the
store and deletes the file.
"""

import json
import logging
import time
from pathlib import Path

from mcaccounts.errors import AccountError
from mcaccounts.gate import MutationGate
from mcaccounts.models import AccountStore
from mcaccounts.storage import write_json_atomic

logger = logging.getLogger("mcaccounts.token_recovery")

# Recovery files older than this are ignored (the tokens have expired anyway)
RECOVERY_MAX_AGE = 3600


def write_token_recovery(
    path: Path,
    uuid: str,
    access_token: str,
    refresh_token: str | None,
    expires_at: int,
) -> bool:
    """Write tokens to the recovery file after a failed store commit.

    Uses atomic write with 0o600 permissions and refuses to write through
    symlinks. Returns True on success, False on failure.
    """
    recovery_data = {
        "uuid": uuid,
        "access_token": access_token,
        "refresh_token": refresh_token,
        "expires_at": expires_at,
        "written_at": int(time.time()),
    }
    try:
        write_json_atomic(path, recovery_data, prefix=".token_recovery_tmp_")
    except OSError as exc:
        logger.error("Failed to write token recovery file: %s", exc)
        return False
    logger.warning("Wrote token recovery file for account %s (store save failed)", uuid)
    return True


def apply_token_recovery(gate: MutationGate, path: Path) -> bool:
    """Apply the recovery file to the store if present, then delete it.

    Returns True if recovery was applied, False otherwise.
    """
    try:
        if not path.exists() or path.is_symlink():
            return False
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError) as exc:
        logger.warning("Cannot read token recovery file: %s", exc)
        return False

    if not isinstance(data, dict):
        data = {}
    uuid = data.get("uuid")
    access_token = data.get("access_token")
    refresh_token = data.get("refresh_token")
    expires_at = data.get("expires_at")

    if (
        not isinstance(uuid, str) or not uuid
        or not isinstance(access_token, str) or not access_token
        or not (refresh_token is None or isinstance(refresh_token, str))
        or not isinstance(expires_at, int) or isinstance(expires_at, bool)
    ):
        logger.warning("Token recovery file is incomplete or malformed, removing")
        _safe_remove(path)
        return False

    written_at = data.get("written_at")
    if not isinstance(written_at, (int, float)) or isinstance(written_at, bool):
        written_at = 0
    age = time.time() - written_at
    if age > RECOVERY_MAX_AGE:
        logger.warning("Token recovery file is stale (%ds old), removing", int(age))
        _safe_remove(path)
        return False

    def _patch(store: AccountStore) -> tuple[AccountStore, bool]:
        account = store.accounts.get(uuid)
        if account is None:
            return store, False
        account.access_token = access_token
        if refresh_token:
            account.refresh_token = refresh_token
        account.expires_at = expires_at
        return store, True

    try:
        applied = gate.with_store_mut(_patch)
    except AccountError as exc:
        logger.error("Failed to apply token recovery for account %s: %s", uuid, exc)
        return False

    if not applied:
        logger.warning(
            "Token recovery: account %s not found, removing recovery file", uuid
        )
    else:
        logger.info("Applied token recovery for account %s", uuid)
    _safe_remove(path)
    return applied


def _safe_remove(path: Path):
    """Remove a file, ignoring errors."""
    try:
        path.unlink()
    except OSError:
        pass
