"""Shared fixtures for codex-switcher tests."""

import base64
import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from codex_switcher.config.settings import SwitcherSettings
from codex_switcher.core.logging import reset_logging
from codex_switcher.services.state import AppState


AUTH_NS = "https://api.openai.com/auth"


def make_jwt(claims: dict[str, Any]) -> str:
    """Unsigned JWT with an unpadded base64url payload."""
    header = base64.urlsafe_b64encode(b'{"alg":"none"}').rstrip(b"=").decode()
    payload = base64.urlsafe_b64encode(json.dumps(claims).encode()).rstrip(b"=").decode()
    return f"{header}.{payload}.signature"


def build_auth_blob(
    account_id: str | None = "acct-1",
    email: str | None = "a@example.com",
    refresh_token: str | None = "rt-1",
    user_id: str | None = "user-1",
    last_refresh: Any = "2025-01-01T00:00:00Z",
) -> dict[str, Any]:
    """Codex auth.json shaped blob."""
    access_claims: dict[str, Any] = {}
    if user_id is not None:
        access_claims = {"sub": f"auth0|{user_id}", AUTH_NS: {"user_id": user_id}}
    id_claims = {"email": email} if email is not None else {}

    tokens: dict[str, Any] = {
        "access_token": make_jwt(access_claims),
        "id_token": make_jwt(id_claims),
    }
    if refresh_token is not None:
        tokens["refresh_token"] = refresh_token
    if account_id is not None:
        tokens["account_id"] = account_id

    blob: dict[str, Any] = {"tokens": tokens}
    if last_refresh is not None:
        blob["last_refresh"] = last_refresh
    return blob


@pytest.fixture(autouse=True)
def _reset_logging():
    """Undo structlog configuration done by CLI invocations."""
    yield
    reset_logging()


@pytest.fixture
def jwt() -> Callable[[dict[str, Any]], str]:
    return make_jwt


@pytest.fixture
def auth_blob() -> Callable[..., dict[str, Any]]:
    return build_auth_blob


@pytest.fixture
def switcher_settings(tmp_path: Path) -> SwitcherSettings:
    """Settings pointing every file at a temporary home."""
    return SwitcherSettings(
        store_path=tmp_path / ".codex-switcher" / "accounts.json",
        auth_path=tmp_path / ".codex" / "auth.json",
        usage_url="https://usage.test/wham/usage",
        token_url="https://auth.test/oauth/token",
        lock_timeout_seconds=0.2,
    )


@pytest.fixture
def app_state(switcher_settings: SwitcherSettings) -> AppState:
    return AppState(switcher_settings)


@pytest.fixture
def write_auth_file(switcher_settings: SwitcherSettings) -> Callable[[dict[str, Any]], Path]:
    """Write a blob where the Codex CLI keeps its credentials."""

    def _write(blob: dict[str, Any]) -> Path:
        path = switcher_settings.auth_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(blob))
        return path

    return _write


@pytest.fixture
def seed_account(app_state: AppState) -> Callable[..., Any]:
    """Add an account and persist it, as a prior command would have."""

    def _seed(name: str, auth_json: dict[str, Any], notes: str | None = None) -> Any:
        account = app_state.store.add_account(name, auth_json, notes)
        app_state.save()
        return account

    return _seed
