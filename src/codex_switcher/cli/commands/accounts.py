"""CLI commands for account management and switching."""

import asyncio
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.table import Table

from codex_switcher.accounts.models import Account
from codex_switcher.cli.helpers import console, fail, get_state, run_command
from codex_switcher.exceptions import SwitcherError
from codex_switcher.services import commands
from codex_switcher.services.state import AppState


def _format_quota(account: Account) -> str:
    quota = account.cached_quota
    if quota is None:
        return "-"
    if not quota.is_valid_for_cli:
        return "[red]invalid[/red]"
    return (
        f"{quota.five_hour_label} {quota.five_hour_left:.0f}% / "
        f"{quota.weekly_label} {quota.weekly_left:.0f}%"
    )


def list_accounts() -> None:
    """List stored accounts, newest first."""

    async def _run(state: AppState) -> tuple[list[Account], str | None]:
        return (
            await commands.get_accounts(state),
            await commands.get_current_account_id(state),
        )

    accounts, current = run_command(_run)

    if not accounts:
        console.print("[yellow]No accounts stored.[/yellow]")
        console.print("Log in with the Codex CLI, then run `codex-switcher add-current`.")
        return

    table = Table(title="Codex Accounts")
    table.add_column("", width=1)
    table.add_column("Name", style="green")
    table.add_column("ID", style="cyan")
    table.add_column("Created")
    table.add_column("Last used")
    table.add_column("Quota left")

    for account in accounts:
        table.add_row(
            "*" if account.id == current else "",
            account.name,
            account.id,
            account.created_at.strftime("%Y-%m-%d"),
            account.last_used.strftime("%Y-%m-%d %H:%M") if account.last_used else "-",
            _format_quota(account),
        )

    console.print(table)


def show_current() -> None:
    """Show the currently active account."""

    async def _run(state: AppState) -> Account | None:
        current = await commands.get_current_account_id(state)
        if current is None:
            return None
        accounts = await commands.get_accounts(state)
        return next((a for a in accounts if a.id == current), None)

    account = run_command(_run)
    if account is None:
        console.print("[yellow]No current account.[/yellow]")
        return
    console.print(f"[bold]{account.name}[/bold] ({account.id})")


def add_current(
    name: Annotated[str, typer.Option("--name", "-n", help="Label for the account")],
    notes: Annotated[
        str | None, typer.Option("--notes", help="Free-form notes")
    ] = None,
) -> None:
    """Import the account the Codex CLI is currently logged in as."""
    account = run_command(
        lambda state: commands.import_current_account(state, name, notes)
    )
    console.print(f"[green]Added account {account.name} ({account.id}).[/green]")


def switch(
    account_id: Annotated[str, typer.Argument(help="Account id to activate")],
) -> None:
    """Switch the Codex CLI to another stored account."""
    account = run_command(lambda state: commands.switch_account(state, account_id))
    console.print(f"[green]Switched to {account.name}.[/green]")


def delete(
    account_id: Annotated[str, typer.Argument(help="Account id to delete")],
    force: Annotated[
        bool, typer.Option("--force", "-f", help="Skip confirmation")
    ] = False,
) -> None:
    """Delete a stored account."""
    if not force and not typer.confirm(f"Delete account {account_id}?"):
        raise typer.Abort()

    run_command(lambda state: commands.delete_account(state, account_id))
    console.print(f"[green]Account {account_id} has been deleted.[/green]")


def rename(
    account_id: Annotated[str, typer.Argument(help="Account id to update")],
    name: Annotated[str | None, typer.Option("--name", "-n")] = None,
    notes: Annotated[str | None, typer.Option("--notes")] = None,
) -> None:
    """Change an account's name or notes."""
    if name is None and notes is None:
        raise fail("Nothing to update; pass --name and/or --notes.")

    account = run_command(
        lambda state: commands.update_account(state, account_id, name=name, notes=notes)
    )
    console.print(f"[green]Updated {account.name}.[/green]")


def export(
    output: Annotated[
        Path | None, typer.Option("--output", "-o", help="Write to file instead of stdout")
    ] = None,
) -> None:
    """Export all accounts as JSON (contains secrets)."""
    document = run_command(commands.export_accounts)
    if output is None:
        typer.echo(document)
        return

    try:
        output.write_text(document)
        output.chmod(0o600)
    except OSError as e:
        raise fail(f"Cannot write {output}: {e}") from e
    console.print(f"[green]Exported accounts to {output}.[/green]")


def import_(
    source: Annotated[Path, typer.Argument(help="File produced by `export`")],
) -> None:
    """Replace all stored accounts with an exported document."""
    try:
        text = source.read_text()
    except OSError as e:
        raise fail(f"Cannot read {source}: {e}") from e

    run_command(lambda state: commands.import_accounts(state, text))
    console.print("[green]Accounts imported.[/green]")


def sync(
    account_id: Annotated[str, typer.Argument(help="Account to update from auth.json")],
) -> None:
    """Copy the Codex CLI's current credentials into a stored account."""
    run_command(lambda state: commands.sync_current_auth_to_account(state, account_id))
    console.print(f"[green]Account {account_id} synced from auth.json.[/green]")


def quota(
    account_id: Annotated[str, typer.Argument(help="Account to query")],
) -> None:
    """Show remaining quota for an account."""
    display = run_command(lambda state: commands.get_quota_by_id(state, account_id))

    table = Table(title=f"Quota ({display.plan_type})")
    table.add_column("Window")
    table.add_column("Left", justify="right")
    table.add_column("Reset")
    table.add_row("5h", f"{display.five_hour_left}%", display.five_hour_reset)
    table.add_row("Weekly", f"{display.weekly_left}%", display.weekly_reset)
    console.print(table)

    if display.credits_balance is not None:
        console.print(f"Credits: {display.credits_balance:g}")


def conflict() -> None:
    """Check whether the Codex CLI rotated the current account's token."""
    name = run_command(commands.check_sync_conflict)
    if name is None:
        console.print("[green]No unsynced changes.[/green]")
        return
    console.print(
        f"[yellow]{name} has newer credentials in auth.json; "
        "run `codex-switcher sync` to keep them.[/yellow]"
    )


def login_status() -> None:
    """Check whether the Codex CLI is logged in."""
    if run_command(commands.check_codex_login):
        console.print("[green]Codex CLI is logged in.[/green]")
    else:
        console.print("[yellow]Codex CLI is not logged in.[/yellow]")
        raise typer.Exit(1)


def fix_quarantine(
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation")] = False,
) -> None:
    """Clear the macOS quarantine flag on the Codex app."""

    async def _run(state: AppState) -> None:
        ticket = await commands.request_quarantine_fix_ticket(state)
        if not yes and not typer.confirm(
            f"Remove quarantine from {state.settings.codex_app_path}?"
        ):
            raise typer.Abort()
        await commands.fix_codex_quarantine(state, ticket)

    run_command(_run)
    console.print("[green]Quarantine flag cleared.[/green]")


def watch() -> None:
    """Run the background sync scheduler in the foreground until interrupted."""

    def _print_event(event: str, payload: dict[str, Any]) -> None:
        console.print(f"[cyan]{event}[/cyan] {payload.get('account_id', '')}")

    async def _run(state: AppState) -> None:
        state.subscribe(_print_event)
        settings = await commands.get_store_settings(state)
        if not settings.background_refresh:
            console.print(
                "[yellow]Background refresh is disabled; enable it with "
                "`codex-switcher settings set --background-refresh`.[/yellow]"
            )
        scheduler = state.new_scheduler()
        state.scheduler = scheduler
        await scheduler.start()
        try:
            await asyncio.Event().wait()
        finally:
            await commands.shutdown(state)

    try:
        state = get_state()
        asyncio.run(_run(state))
    except SwitcherError as e:
        raise fail(e.message) from e
    except KeyboardInterrupt:
        console.print("Stopped.")
