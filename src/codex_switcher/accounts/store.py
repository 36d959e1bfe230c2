"""Credential record store and its persistence.

Handles loading, mutating and saving accounts in ~/.codex-switcher/accounts.json.
The whole document is rewritten on every save; there are no partial writes.
"""

import os
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import orjson
from structlog import get_logger

from codex_switcher.accounts.constants import (
    PRIVATE_DIR_MODE,
    PRIVATE_FILE_MODE,
    STORE_VERSION,
)
from codex_switcher.accounts.identity import (
    extract_last_refresh,
    extract_refresh_token,
)
from codex_switcher.accounts.models import Account, StoreSettings, generate_account_id
from codex_switcher.config.settings import DEFAULT_STORE_PATH
from codex_switcher.exceptions import (
    AccountNotFoundError,
    ExternalIOError,
    ValidationError,
)


logger = get_logger(__name__)


@dataclass
class AccountStore:
    """All stored accounts plus the current selection and preferences.

    Invariant: ``current`` is either None or a key of ``accounts``.
    """

    accounts: dict[str, Account] = field(default_factory=dict)
    current: str | None = None
    version: int = STORE_VERSION
    settings: StoreSettings = field(default_factory=StoreSettings)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get_account(self, account_id: str) -> Account:
        account = self.accounts.get(account_id)
        if account is None:
            raise AccountNotFoundError(account_id)
        return account

    def current_account(self) -> Account | None:
        if self.current is None:
            return None
        return self.accounts.get(self.current)

    def list_accounts(self) -> list[Account]:
        """All accounts, newest first; equal timestamps ordered by id."""
        by_id = sorted(self.accounts.values(), key=lambda a: a.id)
        return sorted(by_id, key=lambda a: a.created_at, reverse=True)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_account(
        self, name: str, auth_json: dict[str, Any], notes: str | None = None
    ) -> Account:
        """Insert a new account; it becomes current if nothing is."""
        account = Account(
            name=name,
            auth_json=auth_json,
            refresh_token=extract_refresh_token(auth_json),
            notes=notes,
        )
        while account.id in self.accounts:
            account.id = generate_account_id()

        self.accounts[account.id] = account
        if self.current is None:
            self.current = account.id

        logger.info("account_added", account_id=account.id, name=name)
        return account

    def switch_to(
        self, account_id: str, write_auth: Callable[[dict[str, Any]], None]
    ) -> Account:
        """Make an account active by writing its blob to the external file.

        Args:
            account_id: Account to activate
            write_auth: Writer for the externally-owned credential file

        Raises:
            AccountNotFoundError: If the id is unknown
            ExternalIOError: If the credential file cannot be written
        """
        account = self.get_account(account_id)
        write_auth(account.auth_json)
        account.mark_used()
        self.current = account_id
        logger.info("account_switched", account_id=account_id)
        return account

    def delete_account(self, account_id: str) -> None:
        """Remove an account, repairing ``current`` if it pointed at it."""
        if account_id not in self.accounts:
            raise AccountNotFoundError(account_id)

        del self.accounts[account_id]
        if self.current == account_id:
            remaining = sorted(self.accounts)
            self.current = remaining[0] if remaining else None

        logger.info("account_deleted", account_id=account_id, current=self.current)

    def update_account(
        self, account_id: str, name: str | None = None, notes: str | None = None
    ) -> Account:
        account = self.get_account(account_id)
        if name is not None:
            account.name = name
        if notes is not None:
            account.notes = notes
        return account

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def backfill_refresh_tokens(self) -> bool:
        """Populate missing cached refresh tokens from each blob.

        Returns:
            True if any account changed
        """
        changed = False
        for account in self.accounts.values():
            if account.refresh_token is not None and not account.refresh_token.strip():
                account.refresh_token = None
                changed = True
            if account.refresh_token is None:
                token = extract_refresh_token(account.auth_json)
                if token is not None:
                    account.refresh_token = token
                    changed = True
        return changed

    def accounts_missing_refresh_token(self) -> list[str]:
        return sorted(
            account.name
            for account in self.accounts.values()
            if account.refresh_token is None
        )

    def accounts_missing_last_refresh(self) -> list[str]:
        return sorted(
            account.name
            for account in self.accounts.values()
            if extract_last_refresh(account.auth_json) is None
        )

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "accounts": {
                account_id: account.to_dict()
                for account_id, account in self.accounts.items()
            },
            "current": self.current,
            "version": self.version,
            "settings": self.settings.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AccountStore":
        """Create from dictionary loaded from JSON.

        Accounts that fail to parse are skipped with a warning.
        """
        accounts_data = data.get("accounts") or {}
        if not isinstance(accounts_data, dict):
            raise ValueError("'accounts' must be an object")

        accounts: dict[str, Account] = {}
        for account_id, account_data in accounts_data.items():
            try:
                account = Account.from_dict({"id": account_id, **account_data})
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("invalid_account_skipped", account_id=account_id, error=str(e))
                continue
            accounts[account.id] = account

        current = data.get("current")
        if current is not None and current not in accounts:
            logger.warning("dangling_current_cleared", current=current)
            current = None

        return cls(
            accounts=accounts,
            current=current,
            version=int(data.get("version", STORE_VERSION)),
            settings=StoreSettings.from_dict(data.get("settings")),
        )

    def export(self) -> str:
        """Serialize the whole store as pretty-printed JSON."""
        return orjson.dumps(self.to_dict(), option=orjson.OPT_INDENT_2).decode()

    @classmethod
    def import_json(cls, text: str | bytes) -> "AccountStore":
        """Parse an exported document and run the backfill pass.

        Raises:
            ValidationError: If the document is not a valid store
        """
        try:
            data = orjson.loads(text)
        except orjson.JSONDecodeError as e:
            raise ValidationError(f"Invalid accounts document: {e}") from e

        if not isinstance(data, dict):
            raise ValidationError("Invalid accounts document: expected an object")
        if "accounts" not in data:
            raise ValidationError("Invalid accounts document: missing 'accounts' field")

        try:
            store = cls.from_dict(data)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Invalid accounts document: {e}") from e

        store.backfill_refresh_tokens()
        return store


def load_store(path: Path | None = None) -> AccountStore:
    """Load the store from disk, returning an empty store if absent.

    Runs the refresh-token backfill and saves if it changed anything.

    Raises:
        ExternalIOError: If the file exists but cannot be read or parsed
    """
    path = Path(path or DEFAULT_STORE_PATH).expanduser()

    if not path.exists():
        logger.debug("store_not_found", path=str(path))
        return AccountStore()

    try:
        data = orjson.loads(path.read_bytes())
    except OSError as e:
        raise ExternalIOError(f"Cannot read accounts file: {e}", path=str(path)) from e
    except orjson.JSONDecodeError as e:
        raise ExternalIOError(f"Invalid accounts file: {e}", path=str(path)) from e

    if not isinstance(data, dict):
        raise ExternalIOError(
            f"Invalid accounts file format: expected object, got {type(data).__name__}",
            path=str(path),
        )

    try:
        store = AccountStore.from_dict(data)
    except (TypeError, ValueError) as e:
        raise ExternalIOError(f"Invalid accounts file: {e}", path=str(path)) from e

    if store.backfill_refresh_tokens():
        logger.info("refresh_tokens_backfilled", path=str(path))
        save_store(store, path)

    logger.debug("accounts_loaded", path=str(path), count=len(store.accounts))
    return store


def save_store(store: AccountStore, path: Path | None = None) -> None:
    """Write the whole store atomically with owner-only permissions.

    Raises:
        ExternalIOError: On file system errors
    """
    path = Path(path or DEFAULT_STORE_PATH).expanduser()
    temp_path = path.with_suffix(".json.tmp")

    try:
        path.parent.mkdir(mode=PRIVATE_DIR_MODE, parents=True, exist_ok=True)
        if os.name == "posix":
            os.chmod(path.parent, PRIVATE_DIR_MODE)

        temp_path.write_bytes(
            orjson.dumps(store.to_dict(), option=orjson.OPT_INDENT_2)
        )
        if os.name == "posix":
            os.chmod(temp_path, PRIVATE_FILE_MODE)
        os.replace(temp_path, path)
    except OSError as e:
        logger.error("accounts_save_failed", path=str(path), error=str(e))
        temp_path.unlink(missing_ok=True)
        raise ExternalIOError(f"Cannot write accounts file: {e}", path=str(path)) from e

    logger.debug("accounts_saved", path=str(path), count=len(store.accounts))
