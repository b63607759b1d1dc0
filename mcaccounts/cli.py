"""
CLI for mc-accounts.

Manage the launcher's stored accounts from a terminal: list them, switch the
active one, remove them, and print or refresh access tokens.
"""

import asyncio
import logging
import sys
from datetime import datetime
from typing import Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from mcaccounts.config import AccountsConfig
from mcaccounts.errors import AccountError, ReauthenticationRequired
from mcaccounts.manager import AccountManager

console = Console()
logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False):
    """Configure logging based on verbosity."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _load_manager() -> AccountManager:
    """Build the account manager from environment config, exiting on bad config."""
    try:
        config = AccountsConfig.from_env()
    except ValueError as e:
        console.print(f"[red]Configuration error:[/red] {escape(str(e))}")
        sys.exit(1)
    manager = AccountManager(config)
    try:
        manager.apply_token_recovery()
    except AccountError as e:
        logger.debug("Token recovery skipped: %s", e)
    return manager


def _fail(exc: AccountError):
    console.print(f"[red]Error:[/red] {escape(str(exc))}")
    if isinstance(exc, ReauthenticationRequired):
        console.print("Sign in again from the launcher to restore this account.")
    elif exc.retryable:
        console.print("[dim]This may be temporary. Try again shortly.[/dim]")
    sys.exit(1)


def _fmt_time(value: Optional[datetime]) -> str:
    if value is None:
        return "-"
    return value.astimezone().strftime("%Y-%m-%d %H:%M")


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def main(verbose: bool):
    """mc-accounts - Launcher account and token manager."""
    setup_logging(verbose)


@main.command(name="list")
def list_accounts():
    """List stored accounts, most recently used first."""
    manager = _load_manager()
    try:
        summaries = manager.get_all_accounts()
    except AccountError as e:
        _fail(e)

    if not summaries:
        console.print("[yellow]No accounts stored.[/yellow]")
        return

    table = Table(title="Accounts")
    table.add_column("", width=1)
    table.add_column("Username", style="cyan")
    table.add_column("UUID", style="dim")
    table.add_column("Added")
    table.add_column("Last used")
    for s in summaries:
        table.add_row(
            "[green]*[/green]" if s.is_active else "",
            s.username,
            s.uuid,
            _fmt_time(s.added_at),
            _fmt_time(s.last_used),
        )
    console.print(table)


@main.command()
@click.argument("uuid")
@click.argument("username")
@click.option("--access-token", required=True, help="Access token from sign-in")
@click.option("--refresh-token", default=None, help="Refresh token, if the provider issued one")
@click.option("--expires-at", type=int, required=True, help="Expiry as epoch seconds")
def add(uuid: str, username: str, access_token: str, refresh_token: Optional[str], expires_at: int):
    """Store an account from an external sign-in."""
    manager = _load_manager()
    try:
        manager.add_account(uuid, username, access_token, refresh_token, expires_at)
        active = manager.get_active_account()
    except AccountError as e:
        _fail(e)
    console.print(f"[green]Added[/green] {username} ({uuid})")
    if active is not None and active.uuid == uuid:
        console.print("[dim]This is now the active account.[/dim]")


@main.command()
@click.argument("uuid")
def use(uuid: str):
    """Make UUID the active account."""
    manager = _load_manager()
    try:
        account = manager.set_active_account(uuid)
    except AccountError as e:
        _fail(e)
    console.print(f"[green]Active account:[/green] {account.username} ({account.uuid})")


@main.command()
@click.argument("uuid")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
def remove(uuid: str, yes: bool):
    """Remove the account UUID."""
    manager = _load_manager()
    try:
        account = manager.get_account(uuid)
    except AccountError as e:
        _fail(e)
    if account is None:
        console.print(f"[yellow]No account {uuid}; nothing to remove.[/yellow]")
        return

    if not yes:
        click.confirm(f"Remove {account.username} ({uuid})?", abort=True)

    try:
        manager.remove_account(uuid)
        active = manager.get_active_account()
    except AccountError as e:
        _fail(e)
    console.print(f"[green]Removed[/green] {account.username}")
    if active is not None:
        console.print(f"Active account: {active.username} ({active.uuid})")
    else:
        console.print("[dim]No accounts left.[/dim]")


@main.command()
def active():
    """Show the active account."""
    manager = _load_manager()
    try:
        account = manager.get_active_account()
    except AccountError as e:
        _fail(e)
    if account is None:
        console.print("[yellow]No active account.[/yellow]")
        sys.exit(1)
    console.print(f"{account.username} ({account.uuid})")


@main.command()
@click.argument("uuid", required=False)
def token(uuid: Optional[str]):
    """Print a valid access token (refreshing if needed).

    Defaults to the active account when UUID is omitted.
    """
    manager = _load_manager()

    async def _get() -> str:
        if uuid is None:
            _, tok = await manager.get_active_token()
            return tok
        return await manager.get_valid_token(uuid)

    try:
        value = asyncio.run(_get())
    except AccountError as e:
        _fail(e)
    # Plain print so the token can be piped
    print(value)


@main.command()
@click.option("--buffer", "buffer_seconds", type=int, default=None, help="Refresh tokens expiring within this many seconds")
def refresh(buffer_seconds: Optional[int]):
    """Refresh every token that is close to expiry."""
    manager = _load_manager()
    try:
        result = asyncio.run(manager.refresh_expiring_tokens(buffer_seconds))
    except AccountError as e:
        _fail(e)
    console.print(
        f"Checked {result['checked']}: "
        f"[green]{result['refreshed']} refreshed[/green], "
        f"{result['skipped']} skipped, "
        f"[red]{result['failed']} failed[/red]"
    )
    if result["failed"]:
        sys.exit(1)


@main.command()
@click.argument("uuid", required=False)
def profile(uuid: Optional[str]):
    """Show the game profile (name, active skin, capes)."""
    from mcaccounts.profile import fetch_profile

    manager = _load_manager()
    try:
        prof = asyncio.run(fetch_profile(manager, uuid))
    except AccountError as e:
        _fail(e)

    console.print(f"[bold]{prof.name}[/bold] ({prof.id})")
    skin = prof.active_skin()
    if skin is not None:
        console.print(f"Skin: {skin.variant.lower()} {skin.url}")
    for cape in prof.capes:
        marker = " [green](equipped)[/green]" if cape.state == "ACTIVE" else ""
        console.print(f"Cape: {cape.alias or cape.id}{marker}")


if __name__ == "__main__":
    main()
