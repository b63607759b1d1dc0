"""Tests for the mcaccounts command line."""

import json

import pytest
from click.testing import CliRunner

from mcaccounts.cli import main

FAR_FUTURE = 4_000_000_000


@pytest.fixture
def runner(tmp_path):
    return CliRunner(env={"MCACCOUNTS_HOME": str(tmp_path / "home")})


def _add(runner, uuid, username, expires_at=FAR_FUTURE, refresh_token=None):
    args = ["add", uuid, username, "--access-token", f"tok_{uuid}", "--expires-at", str(expires_at)]
    if refresh_token:
        args += ["--refresh-token", refresh_token]
    return runner.invoke(main, args)


def test_list_empty(runner):
    result = runner.invoke(main, ["list"])
    assert result.exit_code == 0
    assert "No accounts stored" in result.output


def test_add_and_list(runner, tmp_path):
    result = _add(runner, "u1", "Alice")
    assert result.exit_code == 0
    assert "Added" in result.output
    assert "active account" in result.output

    _add(runner, "u2", "Bob")
    result = runner.invoke(main, ["list"])
    assert result.exit_code == 0
    assert "Alice" in result.output
    assert "Bob" in result.output
    assert "tok_u1" not in result.output

    data = json.loads((tmp_path / "home" / "accounts.json").read_text(encoding="utf-8"))
    assert set(data["accounts"]) == {"u1", "u2"}
    assert data["active_account_uuid"] == "u1"


def test_use_and_active(runner):
    _add(runner, "u1", "Alice")
    _add(runner, "u2", "Bob")
    result = runner.invoke(main, ["use", "u2"])
    assert result.exit_code == 0
    result = runner.invoke(main, ["active"])
    assert result.exit_code == 0
    assert "Bob (u2)" in result.output


def test_use_unknown_account_fails(runner):
    result = runner.invoke(main, ["use", "ghost"])
    assert result.exit_code == 1
    assert "Error" in result.output
    assert "ghost" in result.output


def test_active_without_accounts(runner):
    result = runner.invoke(main, ["active"])
    assert result.exit_code == 1
    assert "No active account" in result.output


def test_remove(runner):
    _add(runner, "u1", "Alice")
    _add(runner, "u2", "Bob")
    result = runner.invoke(main, ["remove", "u1", "-y"])
    assert result.exit_code == 0
    assert "Removed" in result.output
    assert "Bob (u2)" in result.output


def test_remove_asks_for_confirmation(runner):
    _add(runner, "u1", "Alice")
    result = runner.invoke(main, ["remove", "u1"], input="n\n")
    assert result.exit_code == 1
    result = runner.invoke(main, ["active"])
    assert "Alice" in result.output


def test_remove_unknown_is_not_an_error(runner):
    result = runner.invoke(main, ["remove", "ghost", "-y"])
    assert result.exit_code == 0
    assert "nothing to remove" in result.output


def test_token_prints_token(runner):
    _add(runner, "u1", "Alice")
    result = runner.invoke(main, ["token"])
    assert result.exit_code == 0
    assert result.output.strip() == "tok_u1"

    result = runner.invoke(main, ["token", "u1"])
    assert result.output.strip() == "tok_u1"


def test_token_dead_account_asks_for_sign_in(runner):
    _add(runner, "u1", "Alice", expires_at=1)
    result = runner.invoke(main, ["token", "u1"])
    assert result.exit_code == 1
    assert "Sign in again" in result.output


def test_refresh_with_nothing_due(runner):
    _add(runner, "u1", "Alice", refresh_token="ref")
    result = runner.invoke(main, ["refresh"])
    assert result.exit_code == 0
    assert "0 refreshed" in result.output
    assert "1 skipped" in result.output


def test_bad_config_exits(tmp_path):
    runner = CliRunner(
        env={"MCACCOUNTS_HOME": str(tmp_path), "MCACCOUNTS_EXPIRY_SKEW": "soon"}
    )
    result = runner.invoke(main, ["list"])
    assert result.exit_code == 1
    assert "Configuration error" in result.output


def test_corrupt_store_reported(runner, tmp_path):
    home = tmp_path / "home"
    home.mkdir()
    (home / "accounts.json").write_text("{oops", encoding="utf-8")
    result = runner.invoke(main, ["list"])
    assert result.exit_code == 1
    assert "Error" in result.output
    # Left in place for the user to fix
    assert (home / "accounts.json").read_text(encoding="utf-8") == "{oops"


def test_commands_build_manager_from_environment(runner, tmp_path):
    """Each command reads MCACCOUNTS_HOME; the process-wide manager is untouched."""
    from mcaccounts import cli, manager as manager_module

    manager_module.reset_manager()
    assert not hasattr(cli, "get_manager")
    _add(runner, "u1", "Alice")
    assert (tmp_path / "home" / "accounts.json").exists()
    assert manager_module._manager is None
