"""codex-switcher command line entry point."""

from typing import Annotated

import typer

from codex_switcher import __version__
from codex_switcher.cli.commands import accounts
from codex_switcher.cli.commands.settings import app as settings_app
from codex_switcher.cli.helpers import console
from codex_switcher.core.logging import setup_logging


app = typer.Typer(
    name="codex-switcher",
    help="Manage multiple Codex CLI accounts and switch between them",
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    if value:
        console.print(f"codex-switcher {__version__}")
        raise typer.Exit()


@app.callback()
def app_main(
    log_level: Annotated[
        str, typer.Option("--log-level", help="DEBUG, INFO, WARNING or ERROR")
    ] = "WARNING",
    version: Annotated[
        bool | None,
        typer.Option(
            "--version", callback=version_callback, is_eager=True, help="Show version"
        ),
    ] = None,
) -> None:
    """Manage multiple Codex CLI accounts."""
    setup_logging(log_level)


app.command(name="list")(accounts.list_accounts)
app.command(name="current")(accounts.show_current)
app.command(name="add-current")(accounts.add_current)
app.command(name="switch")(accounts.switch)
app.command(name="delete")(accounts.delete)
app.command(name="rename")(accounts.rename)
app.command(name="export")(accounts.export)
app.command(name="import")(accounts.import_)
app.command(name="sync")(accounts.sync)
app.command(name="quota")(accounts.quota)
app.command(name="conflict")(accounts.conflict)
app.command(name="login-status")(accounts.login_status)
app.command(name="fix-quarantine")(accounts.fix_quarantine)
app.command(name="watch")(accounts.watch)
app.add_typer(settings_app)


def main() -> None:
    app()
