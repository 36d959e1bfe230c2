"""Environment configuration for codex-switcher."""

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


__all__ = [
    "DEFAULT_AUTH_PATH",
    "DEFAULT_STORE_PATH",
    "SwitcherSettings",
    "get_settings",
]

DEFAULT_STORE_PATH = Path("~/.codex-switcher/accounts.json")
DEFAULT_AUTH_PATH = Path("~/.codex/auth.json")

# Public client id used by the Codex CLI for its native OAuth flow
CODEX_CLIENT_ID = "app_EMoamEEZ73f0CkXaXp7hrann"


class SwitcherSettings(BaseSettings):
    """
    Process-level configuration.

    Values come from CODEX_SWITCHER_* environment variables. The per-store
    preferences (background refresh, interval, IDE) are persisted inside the
    accounts file instead, see ``codex_switcher.accounts.models.StoreSettings``.
    """

    model_config = SettingsConfigDict(
        env_prefix="CODEX_SWITCHER_",
        case_sensitive=False,
        extra="ignore",
    )

    store_path: Path = Field(
        default=DEFAULT_STORE_PATH,
        description="Location of the persisted account store",
    )

    auth_path: Path = Field(
        default=DEFAULT_AUTH_PATH,
        description="Credential file read and written by the Codex CLI",
    )

    lock_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        le=60.0,
        description="Bounded wait for a per-account refresh lock or the accounts file lock",
    )

    http_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=300.0,
        description="Timeout for usage and OAuth requests",
    )

    usage_url: str = Field(
        default="https://chatgpt.com/backend-api/wham/usage",
        description="Quota/usage endpoint",
    )

    token_url: str = Field(
        default="https://auth.openai.com/oauth/token",
        description="OAuth token endpoint used for refresh",
    )

    client_id: str = Field(
        default=CODEX_CLIENT_ID,
        description="OAuth client id",
    )

    user_agent: str = Field(
        default="CodexSwitcher/1.0",
        description="User-Agent sent to remote collaborators",
    )

    ticket_ttl_seconds: int = Field(
        default=120,
        ge=10,
        le=600,
        description="Lifetime of a quarantine fix ticket",
    )

    disabled_poll_seconds: float = Field(
        default=60.0,
        gt=0,
        description="How often the scheduler rechecks while background refresh is off",
    )

    codex_app_path: Path = Field(
        default=Path("/Applications/Codex.app"),
        description="Codex application bundle cleared by the quarantine fix",
    )

    @field_validator("store_path", "auth_path", mode="after")
    @classmethod
    def expand_user(cls, v: Path) -> Path:
        return v.expanduser()


def get_settings() -> SwitcherSettings:
    """Build settings from the current environment."""
    return SwitcherSettings()
