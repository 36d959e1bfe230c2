"""Credential store, identity matching and sync with the Codex auth file."""

from .identity import (
    decode_jwt_claims,
    extract_account_id,
    extract_email,
    extract_last_refresh,
    extract_refresh_token,
    extract_subject_id,
    identities_match,
)
from .locks import RefreshLockManager
from .models import Account, QuotaSnapshot, StoreSettings
from .store import AccountStore, load_store, save_store
from .sync import detect_conflict_for_current, sync_account_from_external


__all__ = [
    "Account",
    "AccountStore",
    "QuotaSnapshot",
    "RefreshLockManager",
    "StoreSettings",
    "decode_jwt_claims",
    "detect_conflict_for_current",
    "extract_account_id",
    "extract_email",
    "extract_last_refresh",
    "extract_refresh_token",
    "extract_subject_id",
    "identities_match",
    "load_store",
    "save_store",
    "sync_account_from_external",
]
