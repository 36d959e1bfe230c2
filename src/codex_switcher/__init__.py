"""Manage multiple Codex CLI accounts and switch between them."""

__version__ = "0.1.0"
