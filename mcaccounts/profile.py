"""Minecraft profile fetch for the active account.

Follows the contract every authenticated feature uses: resolve the account,
get a valid token from the manager, then make the request. A changed
in-game name is written back to the account store.
"""

import logging
from typing import Optional

import httpx
from pydantic import BaseModel, ValidationError

from mcaccounts.errors import (
    AccountNotFound,
    MalformedResponse,
    NetworkFailure,
    ReauthenticationRequired,
)
from mcaccounts.manager import AccountManager

logger = logging.getLogger("mcaccounts.profile")

PROFILE_URL = "https://api.minecraftservices.com/minecraft/profile"


class Skin(BaseModel):
    id: str
    state: str
    url: str
    variant: str
    alias: Optional[str] = None


class Cape(BaseModel):
    id: str
    state: str
    url: str
    alias: Optional[str] = None


class Profile(BaseModel):
    id: str
    name: str
    skins: list[Skin] = []
    capes: list[Cape] = []

    def active_skin(self) -> Optional[Skin]:
        """The skin currently worn, if any.

        >>> Profile(id="x", name="n").active_skin() is None
        True
        """
        return next((s for s in self.skins if s.state == "ACTIVE"), None)


async def fetch_profile(manager: AccountManager, uuid: Optional[str] = None) -> Profile:
    """Fetch the game profile for ``uuid`` (default: the active account)."""
    if uuid is None:
        active = manager.get_active_account()
        if active is None:
            raise AccountNotFound("no active account; sign in first", operation="fetch_profile")
        uuid = active.uuid

    token = await manager.get_valid_token(uuid)

    try:
        async with httpx.AsyncClient(timeout=15.0) as client:
            resp = await client.get(
                PROFILE_URL,
                headers={"Authorization": f"Bearer {token}"},
            )
    except httpx.HTTPError as e:
        raise NetworkFailure(
            f"profile request failed: {e}", uuid=uuid, operation="fetch_profile"
        ) from e

    if resp.status_code == 401:
        raise ReauthenticationRequired(
            "profile API rejected the access token; sign in again",
            uuid=uuid, operation="fetch_profile",
        )
    if resp.status_code != 200:
        raise NetworkFailure(
            f"profile fetch failed (HTTP {resp.status_code})",
            status_code=resp.status_code, uuid=uuid, operation="fetch_profile",
        )

    try:
        profile = Profile.model_validate(resp.json())
    except (ValueError, ValidationError) as e:
        logger.error("Account %s: unexpected profile response", uuid)
        raise MalformedResponse(
            "profile response could not be parsed",
            status_code=resp.status_code, uuid=uuid, operation="fetch_profile",
        ) from e

    account = manager.get_account(uuid)
    if account is not None and account.username != profile.name:
        manager.update_username(uuid, profile.name)
        logger.info("Account %s renamed %s -> %s", uuid, account.username, profile.name)

    return profile
