"""Configuration for codex-switcher."""

from .settings import SwitcherSettings, get_settings


__all__ = ["SwitcherSettings", "get_settings"]
