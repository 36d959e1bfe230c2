"""CLI commands for stored preferences."""

from typing import Annotated

import typer
from rich.table import Table

from codex_switcher.accounts.models import StoreSettings
from codex_switcher.cli.helpers import console, fail, run_command
from codex_switcher.services import commands
from codex_switcher.services.state import AppState


app = typer.Typer(name="settings", help="Show or change stored preferences")


def _print_settings(settings: StoreSettings) -> None:
    table = Table(title="Settings", show_header=False)
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    table.add_row("background_refresh", str(settings.background_refresh))
    table.add_row(
        "refresh_interval_minutes",
        f"{settings.refresh_interval_minutes} (effective {settings.effective_interval_minutes()})",
    )
    table.add_row("primary_ide", settings.primary_ide)
    table.add_row("auto_reload_ide", str(settings.auto_reload_ide))
    table.add_row("use_pkill_restart", str(settings.use_pkill_restart))
    console.print(table)


@app.command(name="show")
def show_settings() -> None:
    """Show stored preferences."""
    _print_settings(run_command(commands.get_store_settings))


@app.command(name="set")
def set_settings(
    background_refresh: Annotated[
        bool | None,
        typer.Option(
            "--background-refresh/--no-background-refresh",
            help="Periodically sync the current account from auth.json",
        ),
    ] = None,
    interval: Annotated[
        int | None,
        typer.Option("--interval", help="Sync interval in minutes (0 = default 30)"),
    ] = None,
    primary_ide: Annotated[
        str | None, typer.Option("--primary-ide", help="IDE to reload after switching")
    ] = None,
    auto_reload: Annotated[
        bool | None,
        typer.Option("--auto-reload/--no-auto-reload", help="Reload the IDE after switching"),
    ] = None,
    pkill_restart: Annotated[
        bool | None,
        typer.Option("--pkill-restart/--no-pkill-restart", help="Restart the IDE forcefully"),
    ] = None,
) -> None:
    """Change stored preferences."""
    if all(
        value is None
        for value in (background_refresh, interval, primary_ide, auto_reload, pkill_restart)
    ):
        raise fail("Nothing to change; see --help.")

    async def _run(state: AppState) -> StoreSettings:
        updated = await commands.update_settings(
            state,
            background_refresh=background_refresh,
            refresh_interval_minutes=interval,
            primary_ide=primary_ide,
            auto_reload_ide=auto_reload,
            use_pkill_restart=pkill_restart,
        )
        # The scheduler only lives as long as this process; `watch` runs it
        await commands.shutdown(state)
        return updated

    settings = run_command(_run)
    console.print("[green]Settings saved.[/green]")
    _print_settings(settings)
