"""Shared plumbing for CLI commands."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import typer
from rich.console import Console

from codex_switcher.config.settings import get_settings
from codex_switcher.exceptions import SwitcherError
from codex_switcher.services.state import AppState


T = TypeVar("T")

console = Console()


def get_state() -> AppState:
    """Load application state from the configured store."""
    return AppState.load(get_settings())


def fail(message: str) -> typer.Exit:
    console.print(f"[red]{message}[/red]")
    return typer.Exit(1)


def run_command(command: Callable[[AppState], Awaitable[T]]) -> T:
    """Run an async command against freshly loaded state.

    Switcher errors are printed and turned into exit code 1.
    """
    try:
        state = get_state()
        return asyncio.run(command(state))
    except SwitcherError as e:
        raise fail(e.message) from e
