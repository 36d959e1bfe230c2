"""Application state shared by commands and the background scheduler."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any

from structlog import get_logger

from codex_switcher.accounts.locks import RefreshLockManager, StoreFileLock
from codex_switcher.accounts.scheduler import BackgroundSyncScheduler
from codex_switcher.accounts.store import AccountStore, load_store, save_store
from codex_switcher.config.settings import SwitcherSettings, get_settings
from codex_switcher.security.ticket import QuarantineTicketIssuer


logger = get_logger(__name__)

Observer = Callable[[str, dict[str, Any]], None]


class AppState:
    """Explicitly owned state passed to every command.

    ``store`` is only read or mutated inside ``transaction()``, which is never
    held across a network await.
    """

    def __init__(
        self,
        settings: SwitcherSettings,
        store: AccountStore | None = None,
    ):
        self.settings = settings
        self.store = store if store is not None else AccountStore()
        self.store_lock = asyncio.Lock()
        self.file_lock = StoreFileLock(settings.store_path)
        self.refresh_locks = RefreshLockManager()
        self.ticket_issuer = QuarantineTicketIssuer(settings.ticket_ttl_seconds)
        self.scheduler: BackgroundSyncScheduler | None = None
        self._observers: list[Observer] = []

    @classmethod
    def load(cls, settings: SwitcherSettings | None = None) -> AppState:
        """Build state from the persisted store."""
        settings = settings or get_settings()
        return cls(settings, load_store(settings.store_path))

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AccountStore]:
        """Hold the in-process and cross-process locks with the store reloaded.

        Other codex-switcher processes write the same accounts file, so each
        read-modify-write starts from what is on disk.

        Raises:
            StoreLockedError: If another process holds the file lock too long
        """
        async with self.store_lock:
            async with self.file_lock.hold(self.settings.lock_timeout_seconds):
                self.store = load_store(self.settings.store_path)
                yield self.store

    def save(self) -> None:
        """Persist the whole store. Caller is inside ``transaction()``."""
        save_store(self.store, self.settings.store_path)

    def subscribe(self, observer: Observer) -> None:
        self._observers.append(observer)

    def unsubscribe(self, observer: Observer) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def emit(self, event: str, payload: dict[str, Any] | None = None) -> None:
        """Notify observers; a failing observer does not affect the others."""
        payload = payload or {}
        for observer in list(self._observers):
            try:
                observer(event, payload)
            except Exception as e:
                logger.warning("observer_failed", notify_event=event, error=str(e))

    def new_scheduler(self) -> BackgroundSyncScheduler:
        return BackgroundSyncScheduler(
            self, disabled_poll_seconds=self.settings.disabled_poll_seconds
        )
