"""Account management endpoints for the launcher UI.

The desktop frontend talks to these over localhost. Every endpoint is a thin
wrapper around AccountManager; AccountError subclasses raised here are turned
into JSON error envelopes by the handler registered in main.py.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from mcaccounts.errors import AccountNotFound
from mcaccounts.manager import AccountManager
from mcaccounts.models import AccountSummary

logger = logging.getLogger(__name__)

router = APIRouter()


# --- Helpers ---


def _get_manager(request: Request) -> Optional[AccountManager]:
    """Get the account manager from app state."""
    return getattr(request.app.state, "manager", None)


def _manager_unavailable():
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "error": {"message": "Account store unavailable", "code": "STORE_UNAVAILABLE"}
        },
    )


# --- Pydantic v2 models ---


class AddAccountRequest(BaseModel):
    uuid: str = Field(min_length=1)
    username: str = Field(min_length=1)
    access_token: str = Field(min_length=1)
    refresh_token: Optional[str] = None
    expires_at: int


class RemoveAccountResponse(BaseModel):
    uuid: str
    removed: bool


class TokenResponse(BaseModel):
    uuid: str
    access_token: str
    expires_at: int


class RefreshSweepResponse(BaseModel):
    checked: int
    refreshed: int
    skipped: int
    failed: int


def _summary(manager: AccountManager, uuid: str) -> AccountSummary:
    summary = next((s for s in manager.get_all_accounts() if s.uuid == uuid), None)
    if summary is None:
        # Removed by another request between the mutation and this read
        raise AccountNotFound("account does not exist", uuid=uuid, operation="summary")
    return summary


# --- Routes ---


@router.get("/accounts", response_model=list[AccountSummary])
async def list_accounts(request: Request):
    """All accounts, most recently used first. Never includes tokens."""
    manager = _get_manager(request)
    if manager is None:
        return _manager_unavailable()
    return manager.get_all_accounts()


@router.get("/accounts/active", response_model=Optional[AccountSummary])
async def active_account(request: Request):
    manager = _get_manager(request)
    if manager is None:
        return _manager_unavailable()
    account = manager.get_active_account()
    if account is None:
        return None
    return _summary(manager, account.uuid)


@router.post(
    "/accounts",
    response_model=AccountSummary,
    status_code=status.HTTP_201_CREATED,
)
async def add_account(body: AddAccountRequest, request: Request):
    """Store an account produced by the sign-in flow."""
    manager = _get_manager(request)
    if manager is None:
        return _manager_unavailable()
    manager.add_account(
        body.uuid, body.username, body.access_token, body.refresh_token, body.expires_at
    )
    return _summary(manager, body.uuid)


@router.post("/accounts/{uuid}/use", response_model=AccountSummary)
async def use_account(uuid: str, request: Request):
    manager = _get_manager(request)
    if manager is None:
        return _manager_unavailable()
    manager.set_active_account(uuid)
    return _summary(manager, uuid)


@router.delete("/accounts/{uuid}", response_model=RemoveAccountResponse)
async def remove_account(uuid: str, request: Request):
    manager = _get_manager(request)
    if manager is None:
        return _manager_unavailable()
    return RemoveAccountResponse(uuid=uuid, removed=manager.remove_account(uuid))


@router.post("/accounts/{uuid}/token", response_model=TokenResponse)
async def account_token(uuid: str, request: Request):
    """Valid access token for launching the game or calling the profile API.

    Refreshes first when the stored token is about to expire.
    """
    manager = _get_manager(request)
    if manager is None:
        return _manager_unavailable()
    token = await manager.get_valid_token(uuid)
    account = manager.get_account(uuid)
    if account is None:
        raise AccountNotFound(
            "account was removed while fetching its token", uuid=uuid, operation="token"
        )
    return TokenResponse(uuid=uuid, access_token=token, expires_at=account.expires_at)


@router.post("/accounts/refresh", response_model=RefreshSweepResponse)
async def refresh_expiring(request: Request, buffer_seconds: Optional[int] = None):
    """Refresh every token expiring within the buffer (default from config)."""
    manager = _get_manager(request)
    if manager is None:
        return _manager_unavailable()
    return await manager.refresh_expiring_tokens(buffer_seconds)
