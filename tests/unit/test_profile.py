"""Tests for the game profile fetch."""

import asyncio
from unittest import mock

import httpx
import pytest

from mcaccounts.errors import (
    AccountNotFound,
    MalformedResponse,
    NetworkFailure,
    ReauthenticationRequired,
)
from mcaccounts.profile import Profile, fetch_profile

PROFILE_BODY = {
    "id": "u1",
    "name": "AliceRenamed",
    "skins": [
        {
            "id": "s1",
            "state": "ACTIVE",
            "url": "https://textures.example.test/s1",
            "variant": "SLIM",
        }
    ],
    "capes": [
        {"id": "c1", "state": "INACTIVE", "url": "https://textures.example.test/c1", "alias": "Migrator"}
    ],
}


def _run(coro):
    """Run an async coroutine synchronously."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _mock_client(status_code=200, body=None, json_error=False, get_error=None):
    mock_resp = mock.MagicMock()
    mock_resp.status_code = status_code
    if json_error:
        mock_resp.json.side_effect = ValueError("not json")
    else:
        mock_resp.json.return_value = body if body is not None else {}

    mock_client = mock.AsyncMock()
    mock_client.__aenter__ = mock.AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = mock.AsyncMock(return_value=False)
    if get_error is not None:
        mock_client.get.side_effect = get_error
    else:
        mock_client.get.return_value = mock_resp
    return mock_client


@pytest.fixture
def seeded(manager, clock):
    manager.add_account("u1", "Alice", "tokA", "refA", int(clock.now) + 3600)
    return manager


def test_fetch_profile_syncs_username(seeded):
    client = _mock_client(body=PROFILE_BODY)
    with mock.patch("mcaccounts.profile.httpx.AsyncClient", return_value=client):
        profile = _run(fetch_profile(seeded))

    assert profile.name == "AliceRenamed"
    assert profile.active_skin().variant == "SLIM"
    assert seeded.get_account("u1").username == "AliceRenamed"

    _, kwargs = client.get.call_args
    assert kwargs["headers"]["Authorization"] == "Bearer tokA"


def test_unchanged_name_does_not_write(seeded):
    body = dict(PROFILE_BODY, name="Alice")
    client = _mock_client(body=body)
    with mock.patch("mcaccounts.profile.httpx.AsyncClient", return_value=client):
        with mock.patch("mcaccounts.gate.save_store") as save:
            _run(fetch_profile(seeded, "u1"))
    save.assert_not_called()


def test_rejected_token_requires_sign_in(seeded):
    client = _mock_client(status_code=401)
    with mock.patch("mcaccounts.profile.httpx.AsyncClient", return_value=client):
        with pytest.raises(ReauthenticationRequired):
            _run(fetch_profile(seeded))


def test_server_error_is_network_failure(seeded):
    client = _mock_client(status_code=503)
    with mock.patch("mcaccounts.profile.httpx.AsyncClient", return_value=client):
        with pytest.raises(NetworkFailure) as exc_info:
            _run(fetch_profile(seeded))
    assert exc_info.value.status_code == 503


def test_connection_error_is_network_failure(seeded):
    client = _mock_client(get_error=httpx.ConnectError("refused"))
    with mock.patch("mcaccounts.profile.httpx.AsyncClient", return_value=client):
        with pytest.raises(NetworkFailure):
            _run(fetch_profile(seeded))


def test_unparseable_profile(seeded):
    client = _mock_client(body={"unexpected": True})
    with mock.patch("mcaccounts.profile.httpx.AsyncClient", return_value=client):
        with pytest.raises(MalformedResponse):
            _run(fetch_profile(seeded))


def test_no_active_account(manager):
    with pytest.raises(AccountNotFound):
        _run(fetch_profile(manager))


def test_profile_without_skins():
    profile = Profile.model_validate({"id": "x", "name": "n"})
    assert profile.skins == []
    assert profile.active_skin() is None
