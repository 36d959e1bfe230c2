"""Reconciliation between a stored account and the external auth.json.

The external file is authoritative for the identity it belongs to, but a
blob is only ever adopted into a record after its identity has been
confirmed. Ambiguity means "do nothing".
"""

import copy
from typing import Any

from structlog import get_logger

from codex_switcher.accounts.identity import (
    extract_email,
    extract_refresh_token,
    identities_match,
)
from codex_switcher.accounts.models import Account
from codex_switcher.accounts.store import AccountStore


logger = get_logger(__name__)


def _looks_like_email(name: str) -> bool:
    return "@" in name.strip().lower()


def sync_account_from_external(
    store: AccountStore, account_id: str, external: dict[str, Any]
) -> bool:
    """Adopt the external blob into one account if it provably belongs to it.

    Args:
        store: Store holding the account
        account_id: Account to update
        external: Blob read from auth.json

    Returns:
        True if the account was updated
    """
    account = store.accounts.get(account_id)
    if account is None:
        logger.warning("sync_rejected", account_id=account_id, reason="unknown_account")
        return False

    if not identities_match(account.auth_json, external):
        logger.warning("sync_rejected", account_id=account_id, reason="identity_mismatch")
        return False

    name = account.name.strip().lower()
    if _looks_like_email(name):
        external_email = extract_email(external)
        if external_email is None or external_email.lower() != name:
            logger.warning("sync_rejected", account_id=account_id, reason="email_mismatch")
            return False

    merged = copy.deepcopy(external)

    if "last_refresh" not in merged and "last_refresh" in account.auth_json:
        merged["last_refresh"] = account.auth_json["last_refresh"]

    external_refresh = extract_refresh_token(merged)
    fallback_refresh = (
        external_refresh
        or account.refresh_token
        or extract_refresh_token(account.auth_json)
    )

    tokens = merged.get("tokens")
    if isinstance(tokens, dict) and fallback_refresh:
        current = tokens.get("refresh_token")
        if not (isinstance(current, str) and current.strip()):
            tokens["refresh_token"] = fallback_refresh

    if external_refresh is not None:
        account.refresh_token = external_refresh

    account.auth_json = merged
    logger.info("account_synced_from_external", account_id=account_id)
    return True


def detect_conflict_for_current(
    account: Account, external: dict[str, Any]
) -> str | None:
    """Report the account name if the CLI rotated its refresh token since last sync.

    Returns None when identities don't match; that is ambiguity, not a conflict.
    """
    if not identities_match(account.auth_json, external):
        return None

    external_refresh = extract_refresh_token(external)
    if external_refresh is None:
        return None

    if external_refresh != extract_refresh_token(account.auth_json):
        return account.name
    return None
