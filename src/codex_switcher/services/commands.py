"""Commands issued by front ends (CLI, GUI) against the application state.

Every command takes the AppState first. Store transactions are short
read/mutate/persist sections only; network calls run between them.
"""

import copy
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from structlog import get_logger

from codex_switcher.accounts.constants import AUTH_CLAIM_NAMESPACE
from codex_switcher.accounts.external import (
    external_auth_exists,
    read_external_auth,
    write_external_auth,
)
from codex_switcher.accounts.identity import (
    decode_jwt_claims,
    extract_account_id,
    extract_email,
    extract_refresh_token,
    identities_match,
)
from codex_switcher.accounts.models import Account, QuotaSnapshot, StoreSettings
from codex_switcher.accounts.store import AccountStore
from codex_switcher.accounts.sync import (
    detect_conflict_for_current,
    sync_account_from_external,
)
from codex_switcher.exceptions import (
    AccountNotFoundError,
    IdentityMismatchError,
    MissingRefreshTokenError,
    SwitcherError,
    TokenInvalidError,
    ValidationError,
)
from codex_switcher.services import usage
from codex_switcher.services.oauth import TokenResponse
from codex_switcher.services.state import AppState
from codex_switcher.services.system import remove_quarantine
from codex_switcher.services.usage import UsageDisplay


logger = get_logger(__name__)

OAUTH_LOGIN_NOTES = "OpenAI OAuth login"


def allow_local_refresh_for_quota(is_current: bool) -> bool:
    """Local token refresh is never done for the current account.

    The Codex CLI refreshes the active account itself; a second refresher
    racing it on the same refresh token would look like token reuse to the
    provider and invalidate it.
    """
    return not is_current


# ============================================================================
# Queries
# ============================================================================


async def get_accounts(state: AppState) -> list[Account]:
    async with state.transaction():
        return copy.deepcopy(state.store.list_accounts())


async def get_current_account_id(state: AppState) -> str | None:
    async with state.transaction():
        return state.store.current


async def get_store_settings(state: AppState) -> StoreSettings:
    async with state.transaction():
        return copy.deepcopy(state.store.settings)


async def check_codex_login(state: AppState) -> bool:
    """Whether the Codex CLI has a credential file at all."""
    return external_auth_exists(state.settings.auth_path)


async def check_sync_conflict(state: AppState) -> str | None:
    """Name of the current account if the CLI rotated its token since last sync."""
    try:
        external = read_external_auth(state.settings.auth_path)
    except SwitcherError:
        return None

    async with state.transaction():
        account = state.store.current_account()
        if account is None:
            return None
        return detect_conflict_for_current(account, external)


# ============================================================================
# Settings & scheduler lifecycle
# ============================================================================


async def _apply_scheduler_toggle(state: AppState, was_enabled: bool, enabled: bool) -> None:
    if enabled and not was_enabled:
        if state.scheduler is None:
            state.scheduler = state.new_scheduler()
        await state.scheduler.start()
    elif was_enabled and not enabled and state.scheduler is not None:
        await state.scheduler.stop()
        state.scheduler = None


async def update_settings(
    state: AppState,
    *,
    auto_reload_ide: bool | None = None,
    primary_ide: str | None = None,
    use_pkill_restart: bool | None = None,
    background_refresh: bool | None = None,
    refresh_interval_minutes: int | None = None,
) -> StoreSettings:
    """Persist preference changes and start/stop the scheduler on toggle."""
    if refresh_interval_minutes is not None and refresh_interval_minutes < 0:
        raise ValidationError("refresh_interval_minutes must not be negative")

    async with state.transaction():
        settings = state.store.settings
        was_enabled = settings.background_refresh

        if auto_reload_ide is not None:
            settings.auto_reload_ide = auto_reload_ide
        if primary_ide is not None:
            settings.primary_ide = primary_ide
        if use_pkill_restart is not None:
            settings.use_pkill_restart = use_pkill_restart
        if background_refresh is not None:
            settings.background_refresh = background_refresh
        if refresh_interval_minutes is not None:
            settings.refresh_interval_minutes = refresh_interval_minutes

        state.save()
        enabled = settings.background_refresh
        result = copy.deepcopy(settings)

    await _apply_scheduler_toggle(state, was_enabled, enabled)
    logger.info("settings_updated", background_refresh=enabled)
    return result


async def startup(state: AppState) -> None:
    """Start the scheduler if background refresh was already enabled."""
    async with state.transaction():
        enabled = state.store.settings.background_refresh
    if enabled:
        await _apply_scheduler_toggle(state, False, True)


async def shutdown(state: AppState) -> None:
    if state.scheduler is not None:
        await state.scheduler.stop()
        state.scheduler = None


# ============================================================================
# Account management
# ============================================================================


async def add_account(
    state: AppState, name: str, auth_json: dict[str, Any], notes: str | None = None
) -> Account:
    """Store a credential blob under a new account."""
    if extract_refresh_token(auth_json) is None:
        raise MissingRefreshTokenError([name])

    async with state.transaction():
        account = state.store.add_account(name, auth_json, notes)
        state.save()
        return copy.deepcopy(account)


async def add_account_from_tokens(state: AppState, tokens: TokenResponse) -> Account:
    """Store the token set produced by a completed OAuth login."""
    if not tokens.refresh_token:
        raise ValidationError("OAuth response has no refresh_token; cannot renew later")

    email = extract_email({"tokens": {"id_token": tokens.id_token}})
    if email is None:
        raise ValidationError("Cannot read user info from the OAuth response (missing id_token)")

    claims = decode_jwt_claims(tokens.id_token) or {}
    auth_claim = claims.get(AUTH_CLAIM_NAMESPACE)
    account_id = (
        auth_claim.get("chatgpt_account_id") if isinstance(auth_claim, dict) else None
    )

    now = datetime.now(UTC)
    expires_at = (
        (now + timedelta(seconds=tokens.expires_in)).isoformat()
        if tokens.expires_in is not None
        else None
    )

    auth_json = {
        "tokens": {
            "access_token": tokens.access_token,
            "refresh_token": tokens.refresh_token,
            "id_token": tokens.id_token,
            "account_id": account_id,
            "expires_at": expires_at,
        },
        "last_refresh": now.isoformat(),
    }
    return await add_account(state, email, auth_json, OAUTH_LOGIN_NOTES)


async def import_current_account(
    state: AppState, name: str, notes: str | None = None
) -> Account:
    """Adopt whatever the Codex CLI is logged in as as a new account."""
    auth_json = read_external_auth(state.settings.auth_path)
    if extract_refresh_token(auth_json) is None:
        raise ValidationError(
            "Current auth.json has no refresh_token and cannot be renewed; log in again"
        )
    return await add_account(state, name, auth_json, notes)


async def delete_account(state: AppState, account_id: str) -> None:
    async with state.transaction():
        state.store.delete_account(account_id)
        state.save()


async def update_account(
    state: AppState,
    account_id: str,
    name: str | None = None,
    notes: str | None = None,
) -> Account:
    async with state.transaction():
        account = state.store.update_account(account_id, name=name, notes=notes)
        state.save()
        return copy.deepcopy(account)


async def export_accounts(state: AppState) -> str:
    async with state.transaction():
        return state.store.export()


async def import_accounts(state: AppState, text: str | bytes) -> None:
    """Replace the live store with an exported document.

    Raises:
        ValidationError: If the document is invalid
        MissingRefreshTokenError: Naming every account without a refresh token
    """
    new_store = AccountStore.import_json(text)
    missing = new_store.accounts_missing_refresh_token()
    if missing:
        raise MissingRefreshTokenError(missing)

    async with state.transaction():
        was_enabled = state.store.settings.background_refresh
        state.store = new_store
        state.save()
        enabled = new_store.settings.background_refresh

    logger.info("accounts_imported", count=len(new_store.accounts))
    await _apply_scheduler_toggle(state, was_enabled, enabled)


# ============================================================================
# Synchronization
# ============================================================================


async def _reconcile_current(state: AppState) -> bool:
    """Pull auth.json into the current account before it stops being current."""
    try:
        external = read_external_auth(state.settings.auth_path)
    except SwitcherError as e:
        logger.info("reconcile_skipped", error=str(e))
        return False

    async with state.transaction():
        current = state.store.current
        if current is None:
            return False
        if not sync_account_from_external(state.store, current, external):
            return False
        try:
            state.save()
        except SwitcherError as e:
            logger.warning("reconcile_save_failed", account_id=current, error=str(e))
            return False
    return True


async def sync_current_auth_to_account(state: AppState, account_id: str) -> None:
    """Explicitly adopt auth.json into one account.

    Raises:
        AccountNotFoundError: If the id is unknown
        IdentityMismatchError: If auth.json belongs to someone else
    """
    external = read_external_auth(state.settings.auth_path)

    async with state.transaction():
        state.store.get_account(account_id)
        if not sync_account_from_external(state.store, account_id, external):
            raise IdentityMismatchError(
                "auth.json does not belong to this account; sync refused",
                account_id=account_id,
            )
        state.save()


def _read_token_fields(account: Account) -> tuple[str, str | None, str | None]:
    tokens = account.auth_json.get("tokens")
    access_token = tokens.get("access_token") if isinstance(tokens, dict) else None
    if not isinstance(access_token, str) or not access_token.strip():
        raise ValidationError(
            f"Account {account.name} has no access_token",
            details={"account_id": account.id},
        )
    refresh_token = extract_refresh_token(account.auth_json) or account.refresh_token
    return access_token, refresh_token, extract_account_id(account.auth_json)


def _snapshot_from_display(display: UsageDisplay) -> QuotaSnapshot:
    return QuotaSnapshot(
        five_hour_left=float(display.five_hour_left),
        five_hour_reset=display.five_hour_reset,
        weekly_left=float(display.weekly_left),
        weekly_reset=display.weekly_reset,
        plan_type=display.plan_type,
        is_valid_for_cli=display.is_valid_for_cli,
    )


def _invalid_snapshot(previous: QuotaSnapshot | None) -> QuotaSnapshot:
    if previous is None:
        return QuotaSnapshot(
            five_hour_left=0.0,
            five_hour_reset=usage.UNKNOWN_RESET,
            weekly_left=0.0,
            weekly_reset=usage.UNKNOWN_RESET,
            plan_type="unknown",
            is_valid_for_cli=False,
        )
    return QuotaSnapshot(
        five_hour_left=previous.five_hour_left,
        five_hour_reset=previous.five_hour_reset,
        five_hour_label=previous.five_hour_label,
        weekly_left=previous.weekly_left,
        weekly_reset=previous.weekly_reset,
        weekly_label=previous.weekly_label,
        plan_type=previous.plan_type,
        is_valid_for_cli=False,
    )


def _apply_new_tokens(account: Account, tokens: TokenResponse) -> None:
    blob = account.auth_json
    token_obj = blob.get("tokens")
    if not isinstance(token_obj, dict):
        token_obj = {}
        blob["tokens"] = token_obj

    now = datetime.now(UTC)
    token_obj["access_token"] = tokens.access_token
    if tokens.refresh_token:
        token_obj["refresh_token"] = tokens.refresh_token
        account.refresh_token = tokens.refresh_token
    if tokens.id_token:
        token_obj["id_token"] = tokens.id_token
    if tokens.expires_in is not None:
        token_obj["expires_at"] = (now + timedelta(seconds=tokens.expires_in)).isoformat()
    blob["last_refresh"] = now.isoformat()


async def switch_account(state: AppState, account_id: str) -> Account:
    """Make an account the one the Codex CLI uses.

    The outgoing account is reconciled with auth.json first so a token the
    CLI rotated is not lost. A quota pre-check runs without local refresh and
    its failure never blocks the switch.

    Raises:
        AccountNotFoundError: If the id is unknown
        ValidationError: If the account has no access token
        BusyError: If the account is locked by a concurrent refresh
        ExternalIOError: If auth.json cannot be written
    """
    await _reconcile_current(state)

    async with state.transaction():
        account = state.store.get_account(account_id)
        access_token, refresh_token, provider_account_id = _read_token_fields(account)

    try:
        display, _ = await usage.fetch_usage(
            access_token,
            provider_account_id,
            refresh_token,
            allow_refresh=False,
            settings=state.settings,
        )
    except SwitcherError as e:
        logger.warning("switch_quota_precheck_failed", account_id=account_id, error=str(e))
    else:
        async with state.transaction():
            target = state.store.accounts.get(account_id)
            if target is not None:
                target.cached_quota = _snapshot_from_display(display)
                state.save()

    def write_auth(auth_json: dict[str, Any]) -> None:
        write_external_auth(auth_json, state.settings.auth_path)

    async with state.refresh_locks.hold(account_id, state.settings.lock_timeout_seconds):
        async with state.transaction():
            account = state.store.switch_to(account_id, write_auth)
            state.save()
            return copy.deepcopy(account)


async def get_quota_by_id(state: AppState, account_id: str) -> UsageDisplay:
    """Fetch and cache quota for any account without switching.

    For the current account, auth.json is checked first and must belong to
    the same identity; no local token refresh is done for it.

    Raises:
        AccountNotFoundError: If the id is unknown
        IdentityMismatchError: If auth.json belongs to a different identity
        TokenInvalidError: If the token is rejected
        NetworkError: On remote failures
    """
    async with state.transaction():
        state.store.get_account(account_id)
        is_current = state.store.current == account_id

    if is_current:
        await _check_current_identity(state, account_id)
        return await _fetch_and_record_quota(state, account_id, allow_refresh=False)

    # Switching to this account waits on the same lock, so it cannot become
    # current while the lock is held; it may have become current before that.
    async with state.refresh_locks.hold(account_id, state.settings.lock_timeout_seconds):
        async with state.transaction():
            state.store.get_account(account_id)
            is_current = state.store.current == account_id
        if is_current:
            logger.info("quota_account_became_current", account_id=account_id)
            await _check_current_identity(state, account_id)
        return await _fetch_and_record_quota(
            state, account_id, allow_local_refresh_for_quota(is_current)
        )


async def _check_current_identity(state: AppState, account_id: str) -> None:
    external = read_external_auth(state.settings.auth_path)
    async with state.transaction():
        account = state.store.get_account(account_id)
        if not identities_match(account.auth_json, external):
            raise IdentityMismatchError(
                "Current account does not match ~/.codex/auth.json; switch back "
                "to the same account in Codex first",
                account_id=account_id,
            )
        if account.auth_json != external:
            logger.info("quota_current_account_resync", account_id=account_id)
            if sync_account_from_external(state.store, account_id, external):
                state.save()


async def _fetch_and_record_quota(
    state: AppState, account_id: str, allow_refresh: bool
) -> UsageDisplay:
    async with state.transaction():
        account = state.store.get_account(account_id)
        access_token, refresh_token, provider_account_id = _read_token_fields(account)

    try:
        display, new_tokens = await usage.fetch_usage(
            access_token,
            provider_account_id,
            refresh_token,
            allow_refresh=allow_refresh,
            settings=state.settings,
        )
    except SwitcherError as e:
        # A refresh that succeeded before the failure has spent the old refresh token
        refreshed = usage.refreshed_tokens_from(e)
        invalid = isinstance(e, TokenInvalidError)
        if refreshed is not None or invalid:
            async with state.transaction():
                account = state.store.accounts.get(account_id)
                if account is not None:
                    if refreshed is not None:
                        _apply_new_tokens(account, refreshed)
                        logger.info("account_tokens_refreshed", account_id=account_id)
                    if invalid:
                        account.cached_quota = _invalid_snapshot(account.cached_quota)
                    state.save()
        raise

    async with state.transaction():
        account = state.store.accounts.get(account_id)
        if account is None:
            raise AccountNotFoundError(account_id)
        if new_tokens is not None:
            _apply_new_tokens(account, new_tokens)
            logger.info("account_tokens_refreshed", account_id=account_id)
        account.cached_quota = _snapshot_from_display(display)
        state.save()

    return display


# ============================================================================
# Quarantine fix
# ============================================================================


async def request_quarantine_fix_ticket(state: AppState) -> str:
    return state.ticket_issuer.issue()


async def fix_codex_quarantine(
    state: AppState,
    ticket: str,
    remover: Callable[[Path], Awaitable[None]] | None = None,
) -> None:
    """Clear the quarantine flag on the Codex app after ticket confirmation."""
    state.ticket_issuer.consume(ticket)
    await (remover or remove_quarantine)(state.settings.codex_app_path)
