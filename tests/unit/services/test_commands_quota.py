"""Tests for fetching quota by account id."""

import asyncio
import json
from unittest.mock import AsyncMock, patch

import pytest

from codex_switcher.accounts.models import QuotaSnapshot
from codex_switcher.exceptions import (
    AuthFileNotFoundError,
    BusyError,
    IdentityMismatchError,
    NetworkError,
    TokenInvalidError,
)
from codex_switcher.services import commands
from codex_switcher.services.oauth import TokenResponse
from codex_switcher.services.usage import REFRESHED_TOKENS_KEY, UNKNOWN_RESET, UsageDisplay


FETCH_USAGE = "codex_switcher.services.usage.fetch_usage"

DISPLAY = UsageDisplay(
    plan_type="plus",
    five_hour_used=30,
    five_hour_left=70,
    five_hour_reset="resets in 1h 0m",
    weekly_used=10,
    weekly_left=90,
    weekly_reset="resets in 5d",
)


@pytest.fixture
def accounts(seed_account, auth_blob):
    work = seed_account("work", auth_blob(account_id="X", refresh_token="rt1"))
    home = seed_account("home", auth_blob(account_id="Y", refresh_token="rh1"))
    return work, home


@pytest.mark.unit
class TestAllowLocalRefresh:
    def test_never_for_current(self) -> None:
        assert commands.allow_local_refresh_for_quota(True) is False
        assert commands.allow_local_refresh_for_quota(False) is True


@pytest.mark.unit
class TestQuotaForCurrentAccount:
    """The current account is checked against auth.json and never refreshed locally."""

    @pytest.mark.asyncio
    async def test_identity_mismatch_refuses(
        self, app_state, accounts, auth_blob, write_auth_file
    ) -> None:
        work, _ = accounts
        write_auth_file(auth_blob(account_id="Y"))

        with patch(FETCH_USAGE, AsyncMock()) as mock_fetch:
            with pytest.raises(IdentityMismatchError):
                await commands.get_quota_by_id(app_state, work.id)

        mock_fetch.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_auth_file(self, app_state, accounts) -> None:
        work, _ = accounts
        with pytest.raises(AuthFileNotFoundError):
            await commands.get_quota_by_id(app_state, work.id)

    @pytest.mark.asyncio
    async def test_resyncs_then_fetches_without_refresh(
        self, app_state, accounts, auth_blob, write_auth_file
    ) -> None:
        work, _ = accounts
        write_auth_file(auth_blob(account_id="X", refresh_token="rt2"))

        with patch(FETCH_USAGE, AsyncMock(return_value=(DISPLAY, None))) as mock_fetch:
            display = await commands.get_quota_by_id(app_state, work.id)

        assert display == DISPLAY
        assert mock_fetch.await_args.kwargs["allow_refresh"] is False
        assert mock_fetch.await_args.args[2] == "rt2"

        account = app_state.store.accounts[work.id]
        assert account.refresh_token == "rt2"
        assert account.cached_quota.five_hour_left == 70.0
        assert account.cached_quota.weekly_reset == "resets in 5d"


@pytest.mark.unit
class TestQuotaForOtherAccounts:
    """Non-current accounts may be refreshed locally."""

    @pytest.mark.asyncio
    async def test_new_tokens_are_stored(self, app_state, accounts) -> None:
        _, home = accounts
        new_tokens = TokenResponse(
            access_token="new-at", refresh_token="new-rt", id_token="new-id", expires_in=3600
        )

        with patch(FETCH_USAGE, AsyncMock(return_value=(DISPLAY, new_tokens))) as mock_fetch:
            await commands.get_quota_by_id(app_state, home.id)

        assert mock_fetch.await_args.kwargs["allow_refresh"] is True
        account = app_state.store.accounts[home.id]
        tokens = account.auth_json["tokens"]
        assert tokens["access_token"] == "new-at"
        assert tokens["refresh_token"] == "new-rt"
        assert tokens["id_token"] == "new-id"
        assert "expires_at" in tokens
        assert account.refresh_token == "new-rt"
        assert account.auth_json["last_refresh"] != "2025-01-01T00:00:00Z"

        on_disk = json.loads(app_state.settings.store_path.read_text())
        assert on_disk["accounts"][home.id]["refresh_token"] == "new-rt"

    @pytest.mark.asyncio
    async def test_does_not_touch_auth_file(self, app_state, accounts) -> None:
        _, home = accounts

        with patch(FETCH_USAGE, AsyncMock(return_value=(DISPLAY, None))):
            await commands.get_quota_by_id(app_state, home.id)

        assert not app_state.settings.auth_path.exists()

    @pytest.mark.asyncio
    async def test_invalid_token_marks_snapshot(self, app_state, accounts) -> None:
        _, home = accounts
        app_state.store.accounts[home.id].cached_quota = QuotaSnapshot(
            five_hour_left=40.0,
            five_hour_reset="resets in 2h 0m",
            weekly_left=20.0,
            weekly_reset="resets in 1d",
            plan_type="plus",
        )
        app_state.save()

        with patch(FETCH_USAGE, AsyncMock(side_effect=TokenInvalidError())):
            with pytest.raises(TokenInvalidError):
                await commands.get_quota_by_id(app_state, home.id)

        cached = app_state.store.accounts[home.id].cached_quota
        assert cached.is_valid_for_cli is False
        assert cached.five_hour_left == 40.0
        assert cached.plan_type == "plus"

    @pytest.mark.asyncio
    async def test_invalid_token_without_previous_snapshot(self, app_state, accounts) -> None:
        _, home = accounts

        with patch(FETCH_USAGE, AsyncMock(side_effect=TokenInvalidError())):
            with pytest.raises(TokenInvalidError):
                await commands.get_quota_by_id(app_state, home.id)

        cached = app_state.store.accounts[home.id].cached_quota
        assert cached.is_valid_for_cli is False
        assert cached.five_hour_left == 0.0
        assert cached.five_hour_reset == UNKNOWN_RESET

    @pytest.mark.asyncio
    async def test_busy_while_refresh_lock_held(self, app_state, accounts) -> None:
        _, home = accounts
        await app_state.refresh_locks.acquire(home.id)

        with patch(FETCH_USAGE, AsyncMock(return_value=(DISPLAY, None))) as mock_fetch:
            with pytest.raises(BusyError):
                await commands.get_quota_by_id(app_state, home.id)

        mock_fetch.assert_not_called()

    @pytest.mark.asyncio
    async def test_tokens_refreshed_before_a_failure_are_stored(
        self, app_state, accounts
    ) -> None:
        _, home = accounts
        refreshed = TokenResponse(access_token="new-at", refresh_token="new-rt")
        error = NetworkError(
            "Usage request returned 500",
            details={"status_code": 500, REFRESHED_TOKENS_KEY: refreshed.model_dump()},
        )

        with patch(FETCH_USAGE, AsyncMock(side_effect=error)):
            with pytest.raises(NetworkError):
                await commands.get_quota_by_id(app_state, home.id)

        account = app_state.store.accounts[home.id]
        assert account.refresh_token == "new-rt"
        assert account.auth_json["tokens"]["access_token"] == "new-at"
        assert account.cached_quota is None

        on_disk = json.loads(app_state.settings.store_path.read_text())
        assert on_disk["accounts"][home.id]["refresh_token"] == "new-rt"

    @pytest.mark.asyncio
    async def test_rejected_after_refresh_keeps_new_tokens(self, app_state, accounts) -> None:
        _, home = accounts
        error = TokenInvalidError()
        error.details[REFRESHED_TOKENS_KEY] = TokenResponse(
            access_token="new-at", refresh_token="new-rt"
        ).model_dump()

        with patch(FETCH_USAGE, AsyncMock(side_effect=error)):
            with pytest.raises(TokenInvalidError):
                await commands.get_quota_by_id(app_state, home.id)

        account = app_state.store.accounts[home.id]
        assert account.refresh_token == "new-rt"
        assert account.cached_quota.is_valid_for_cli is False

    @pytest.mark.asyncio
    async def test_plain_failure_leaves_account_untouched(self, app_state, accounts) -> None:
        _, home = accounts

        with patch(FETCH_USAGE, AsyncMock(side_effect=NetworkError("offline"))):
            with pytest.raises(NetworkError):
                await commands.get_quota_by_id(app_state, home.id)

        account = app_state.store.accounts[home.id]
        assert account.refresh_token == "rh1"
        assert account.cached_quota is None


@pytest.mark.unit
class TestQuotaDuringSwitch:
    """Quota for an account that becomes current while the call waits."""

    @pytest.mark.asyncio
    async def test_no_local_refresh_once_account_is_current(
        self, app_state, accounts, write_auth_file
    ) -> None:
        work, home = accounts
        write_auth_file(work.auth_json)
        app_state.settings = app_state.settings.model_copy(update={"lock_timeout_seconds": 2})

        gate = asyncio.Event()
        first_started = asyncio.Event()
        calls: list[tuple[str | None, bool, str | None]] = []

        async def fake_fetch(access_token, provider_account_id, refresh_token, **kwargs):
            on_disk = json.loads(app_state.settings.store_path.read_text())
            calls.append((provider_account_id, kwargs["allow_refresh"], on_disk["current"]))
            if len(calls) == 1:
                first_started.set()
                await gate.wait()
            return DISPLAY, None

        with patch(FETCH_USAGE, side_effect=fake_fetch):
            first = asyncio.create_task(commands.get_quota_by_id(app_state, home.id))
            await first_started.wait()

            switch = asyncio.create_task(commands.switch_account(app_state, home.id))
            while len(calls) < 2:
                await asyncio.sleep(0)
            for _ in range(50):
                await asyncio.sleep(0)

            second = asyncio.create_task(commands.get_quota_by_id(app_state, home.id))
            for _ in range(50):
                await asyncio.sleep(0)

            gate.set()
            await asyncio.gather(first, switch, second)

        assert app_state.store.current == home.id
        assert calls[0] == ("Y", True, work.id)
        assert calls[-1] == ("Y", False, home.id)
        for _, allow_refresh, current in calls:
            assert not (allow_refresh and current == home.id)
