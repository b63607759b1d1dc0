"""Tests for environment-driven configuration."""

from pathlib import Path

import pytest

from mcaccounts.config import DEFAULT_CLIENT_ID, DEFAULT_TOKEN_URL, AccountsConfig

_VARS = (
    "MCACCOUNTS_HOME",
    "MCACCOUNTS_CLIENT_ID",
    "MCACCOUNTS_TOKEN_URL",
    "MCACCOUNTS_SCOPE",
    "MCACCOUNTS_EXPIRY_SKEW",
    "MCACCOUNTS_REFRESH_TIMEOUT",
    "MCACCOUNTS_REFRESH_BUFFER",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in _VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    cfg = AccountsConfig.from_env()
    assert cfg.data_dir == Path.home() / ".mcaccounts"
    assert cfg.client_id == DEFAULT_CLIENT_ID
    assert cfg.token_url == DEFAULT_TOKEN_URL
    assert cfg.expiry_skew == 60
    assert cfg.refresh_timeout == 30.0
    assert cfg.refresh_buffer == 900


def test_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("MCACCOUNTS_HOME", str(tmp_path))
    monkeypatch.setenv("MCACCOUNTS_CLIENT_ID", "my-client")
    monkeypatch.setenv("MCACCOUNTS_TOKEN_URL", "https://auth.example.test/token")
    monkeypatch.setenv("MCACCOUNTS_EXPIRY_SKEW", "0")
    monkeypatch.setenv("MCACCOUNTS_REFRESH_TIMEOUT", "2.5")
    monkeypatch.setenv("MCACCOUNTS_REFRESH_BUFFER", "120")

    cfg = AccountsConfig.from_env()
    assert cfg.accounts_file == tmp_path / "accounts.json"
    assert cfg.recovery_file == tmp_path / ".token_recovery.json"
    assert cfg.client_id == "my-client"
    assert cfg.token_url == "https://auth.example.test/token"
    assert cfg.expiry_skew == 0
    assert cfg.refresh_timeout == 2.5
    assert cfg.refresh_buffer == 120


@pytest.mark.parametrize(
    "name,value",
    [
        ("MCACCOUNTS_EXPIRY_SKEW", "abc"),
        ("MCACCOUNTS_EXPIRY_SKEW", "-1"),
        ("MCACCOUNTS_REFRESH_TIMEOUT", "0"),
        ("MCACCOUNTS_REFRESH_BUFFER", "1.5"),
    ],
)
def test_invalid_values(monkeypatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(ValueError):
        AccountsConfig.from_env()
