"""Token refresh against the identity provider, coalesced per account.

Any number of callers may discover at the same moment that an account's
access token needs refreshing. Only the first starts a network exchange; the
rest attach to the same in-flight refresh (a "ticket") and receive its result
or its exception. Refresh tokens rotate, so two parallel exchanges for one
account would race each other and one of them would burn the other's token.

Error mapping for the token endpoint:
- 200 with a usable body                  -> TokenGrant
- 200 with a non-JSON / incomplete body   -> MalformedResponse
- 400 invalid_grant, 401, 403             -> InvalidRefreshToken (account needs sign-in)
- 429, 5xx, other statuses, timeouts      -> NetworkFailure (caller may retry later)
"""

import asyncio
import concurrent.futures
import logging
import threading
import time
from typing import Awaitable, Callable, Optional

import httpx
from pydantic import BaseModel, Field, ValidationError

from mcaccounts.config import AccountsConfig
from mcaccounts.errors import (
    AccountError,
    AccountNotFound,
    InvalidRefreshToken,
    IoFailure,
    MalformedResponse,
    NetworkFailure,
    ReauthenticationRequired,
)
from mcaccounts.freshness import TokenState, classify
from mcaccounts.gate import MutationGate
from mcaccounts.models import Account, AccountStore, utcnow
from mcaccounts.token_recovery import write_token_recovery

logger = logging.getLogger("mcaccounts.refresh")


class TokenGrant(BaseModel):
    """Successful token endpoint response (only the fields we use)."""

    access_token: str = Field(min_length=1)
    refresh_token: Optional[str] = None
    expires_in: int = Field(gt=0)


Exchange = Callable[..., Awaitable[TokenGrant]]


def _error_code(resp) -> Optional[str]:
    try:
        body = resp.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        return body.get("error")
    return None


def parse_token_response(resp, *, uuid: Optional[str] = None) -> TokenGrant:
    """Turn a token endpoint response into a TokenGrant or a typed error."""
    op = "refresh"
    status_code = resp.status_code

    if status_code == 200:
        try:
            body = resp.json()
        except ValueError as e:
            logger.error("Account %s: token endpoint returned a non-JSON body", uuid)
            raise MalformedResponse(
                "token endpoint returned a non-JSON body",
                status_code=status_code, uuid=uuid, operation=op,
            ) from e
        try:
            return TokenGrant.model_validate(body)
        except ValidationError as e:
            logger.error(
                "Account %s: token response missing fields (%d error(s))",
                uuid, e.error_count(),
            )
            raise MalformedResponse(
                "token endpoint response is missing access_token or expires_in",
                status_code=status_code, uuid=uuid, operation=op,
            ) from e

    if status_code in (400, 401):
        error = _error_code(resp)
        if error == "invalid_grant" or status_code == 401:
            raise InvalidRefreshToken(
                "refresh token expired or revoked; sign in again",
                uuid=uuid, operation=op,
            )

    if status_code == 403:
        raise InvalidRefreshToken(
            f"refresh rejected (HTTP {status_code}); sign in again",
            uuid=uuid, operation=op,
        )

    if status_code == 429:
        raise NetworkFailure(
            "rate limited during token refresh",
            status_code=status_code, uuid=uuid, operation=op,
        )

    if status_code >= 500:
        raise NetworkFailure(
            f"server error ({status_code}) during token refresh",
            status_code=status_code, uuid=uuid, operation=op,
        )

    raise NetworkFailure(
        f"unexpected HTTP {status_code} during token refresh",
        status_code=status_code, uuid=uuid, operation=op,
    )


async def exchange_refresh_token(
    refresh_token: str,
    config: AccountsConfig,
    *,
    uuid: Optional[str] = None,
) -> TokenGrant:
    """POST a refresh_token grant to the provider's token endpoint."""
    try:
        async with httpx.AsyncClient(timeout=config.refresh_timeout) as client:
            resp = await client.post(
                config.token_url,
                data={
                    "grant_type": "refresh_token",
                    "client_id": config.client_id,
                    "refresh_token": refresh_token,
                    "scope": config.scope,
                },
                headers={"Accept": "application/json"},
            )
    except httpx.TimeoutException as e:
        raise NetworkFailure(
            "timeout during token refresh", uuid=uuid, operation="refresh"
        ) from e
    except httpx.HTTPError as e:
        raise NetworkFailure(
            f"token refresh request failed: {e}", uuid=uuid, operation="refresh"
        ) from e

    return parse_token_response(resp, uuid=uuid)


class RefreshCoordinator:
    """Runs at most one refresh per account at a time and commits the result.

    The ticket registry maps uuid -> concurrent.futures.Future and is guarded
    by a threading.Lock, so callers on different threads, each driving its own
    event loop, still share one ticket. The first caller runs the exchange as
    a task on its own loop. Every caller awaits the ticket through
    asyncio.wrap_future and asyncio.shield: a caller that is cancelled or
    times out stops waiting, but the exchange itself runs to completion for
    everyone else.
    """

    def __init__(
        self,
        gate: MutationGate,
        config: AccountsConfig,
        *,
        exchange: Optional[Exchange] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._gate = gate
        self._config = config
        self._exchange = exchange or self._default_exchange
        self._clock = clock
        self._tickets: dict[str, concurrent.futures.Future] = {}
        self._tickets_lock = threading.Lock()
        # Strong references so running exchanges are not garbage collected
        self._running: set[asyncio.Task] = set()

    async def _default_exchange(self, refresh_token: str, *, uuid: str) -> TokenGrant:
        return await exchange_refresh_token(refresh_token, self._config, uuid=uuid)

    def in_flight(self, uuid: str) -> bool:
        with self._tickets_lock:
            return uuid in self._tickets

    async def refresh(self, uuid: str, *, min_validity: Optional[int] = None) -> Account:
        """Return the account with a token valid for at least ``min_validity`` seconds.

        Defaults to the configured expiry skew. Starts a refresh ticket or
        joins the one already running for ``uuid``, from any thread.
        """
        with self._tickets_lock:
            ticket = self._tickets.get(uuid)
            leader = ticket is None
            if leader:
                ticket = concurrent.futures.Future()
                # A running future cannot be cancelled by a waiter giving up
                ticket.set_running_or_notify_cancel()
                self._tickets[uuid] = ticket

        if leader:
            task = asyncio.ensure_future(self._run_ticket(uuid, min_validity, ticket))
            self._running.add(task)
            task.add_done_callback(self._running.discard)
        else:
            logger.debug("Joining in-flight refresh for account %s", uuid)

        account = await asyncio.shield(asyncio.wrap_future(ticket))
        return account.model_copy()

    async def _run_ticket(
        self, uuid: str, min_validity: Optional[int], ticket: concurrent.futures.Future
    ) -> None:
        try:
            account = await self._refresh_once(uuid, min_validity)
        except asyncio.CancelledError:
            # The leader's event loop shut down mid-exchange
            self._settle(
                uuid, ticket,
                error=NetworkFailure(
                    "token refresh was interrupted", uuid=uuid, operation="refresh"
                ),
            )
            raise
        except Exception as exc:
            self._settle(uuid, ticket, error=exc)
        else:
            self._settle(uuid, ticket, account=account)

    def _settle(
        self,
        uuid: str,
        ticket: concurrent.futures.Future,
        *,
        account: Optional[Account] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        # Unregister before resolving so a later caller can start a fresh attempt
        with self._tickets_lock:
            if self._tickets.get(uuid) is ticket:
                del self._tickets[uuid]
        if error is not None:
            ticket.set_exception(error)
        else:
            ticket.set_result(account)

    async def _refresh_once(self, uuid: str, min_validity: Optional[int]) -> Account:
        account = self._gate.snapshot().accounts.get(uuid)
        if account is None:
            raise AccountNotFound("account does not exist", uuid=uuid, operation="refresh")

        margin = max(self._config.expiry_skew, min_validity or 0)
        state = classify(account, self._clock(), margin)
        if state is TokenState.FRESH:
            # A refresh that finished just before this ticket started already did the work
            return account
        if state is TokenState.DEAD:
            raise ReauthenticationRequired(
                "access token expired and no refresh token is stored; sign in again",
                uuid=uuid, operation="refresh",
            )

        spent = account.refresh_token
        try:
            grant = await self._exchange(spent, uuid=uuid)
        except InvalidRefreshToken:
            self._revoke_refresh_token(uuid, spent)
            raise
        except MalformedResponse as e:
            logger.error("Account %s: malformed token response: %s", uuid, e.message)
            raise
        except NetworkFailure as e:
            logger.warning("Account %s: token refresh failed: %s", uuid, e.message)
            raise

        return self._commit(uuid, spent, grant)

    def _commit(self, uuid: str, spent: str, grant: TokenGrant) -> Account:
        expires_at = int(self._clock()) + grant.expires_in
        # Token rotation: keep the old refresh token only if no new one was issued
        new_refresh = grant.refresh_token or spent

        def _apply(store: AccountStore) -> tuple[AccountStore, Account]:
            account = store.accounts.get(uuid)
            if account is None:
                raise AccountNotFound(
                    "account was removed while its token was being refreshed",
                    uuid=uuid, operation="refresh",
                )
            account.access_token = grant.access_token
            account.refresh_token = new_refresh
            account.expires_at = expires_at
            account.last_used = utcnow()
            return store, account.model_copy()

        try:
            updated = self._gate.with_store_mut(_apply)
        except IoFailure:
            # The provider has already consumed the old refresh token
            logger.error(
                "Token refresh succeeded but saving FAILED for account %s", uuid
            )
            write_token_recovery(
                self._config.recovery_file,
                uuid,
                grant.access_token,
                new_refresh,
                expires_at,
            )
            raise

        logger.info("Token refreshed for account %s", uuid)
        return updated

    def _revoke_refresh_token(self, uuid: str, rejected: str) -> None:
        """Drop a refresh token the provider rejected so the account classifies as dead."""

        def _apply(store: AccountStore) -> tuple[AccountStore, None]:
            account = store.accounts.get(uuid)
            if account is not None and account.refresh_token == rejected:
                account.refresh_token = None
            return store, None

        try:
            self._gate.with_store_mut(_apply)
        except AccountError as exc:
            logger.error("Could not mark account %s as needing sign-in: %s", uuid, exc)
        else:
            logger.warning("Account %s: refresh token rejected, sign-in required", uuid)

    async def refresh_expiring(self, buffer_seconds: Optional[int] = None) -> dict:
        """Refresh every account whose token expires within ``buffer_seconds``.

        Used by the background loop to keep tokens warm. Accounts without a
        refresh token are skipped. Goes through the same tickets as on-demand
        refreshes, so it never duplicates one already running.

        Returns counts: {"checked": N, "refreshed": N, "skipped": N, "failed": N}
        """
        buffer = self._config.refresh_buffer if buffer_seconds is None else buffer_seconds
        now = self._clock()
        result = {"checked": 0, "refreshed": 0, "skipped": 0, "failed": 0}

        for account in self._gate.snapshot().accounts.values():
            result["checked"] += 1
            if not account.refresh_token or now < account.expires_at - buffer:
                result["skipped"] += 1
                continue
            try:
                await self.refresh(account.uuid, min_validity=buffer)
            except AccountError as exc:
                logger.warning("Proactive refresh failed for account %s: %s", account.uuid, exc)
                result["failed"] += 1
            else:
                result["refreshed"] += 1

        return result
