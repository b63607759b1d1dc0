"""Shared fixtures for mc-accounts tests."""

import asyncio

import pytest

from mcaccounts.config import AccountsConfig
from mcaccounts.manager import AccountManager
from mcaccounts.refresh import TokenGrant

# Fixed "now" for tests that control the clock (epoch seconds)
NOW = 1_800_000_000


class FakeExchange:
    """Stand-in for the provider token exchange that records calls.

    Sleeps ``delay`` seconds before answering so concurrent callers overlap.
    """

    def __init__(self, grant=None, error=None, delay=0.05):
        self.grant = grant or TokenGrant(
            access_token="tok_new", refresh_token="ref_new", expires_in=3600
        )
        self.error = error
        self.delay = delay
        self.calls = []

    async def __call__(self, refresh_token, *, uuid):
        self.calls.append((refresh_token, uuid))
        await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.grant


class FakeClock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def config(tmp_path):
    """Config rooted in a temp directory."""
    return AccountsConfig(data_dir=tmp_path / "data")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_exchange():
    """Factory for FakeExchange objects."""
    def _create(grant=None, error=None, delay=0.05):
        return FakeExchange(grant=grant, error=error, delay=delay)
    return _create


@pytest.fixture
def exchange(make_exchange):
    return make_exchange()


@pytest.fixture
def manager(config, exchange, clock):
    """AccountManager wired to the fake exchange and clock."""
    return AccountManager(config, exchange=exchange, clock=clock)
