"""Locks guarding the credential files.

RefreshLockManager serializes anything that writes the external credential
file for a given account. Locks are per id, so operations on different
accounts never wait on each other.

StoreFileLock serializes load/modify/save of the accounts file across
processes (a running `watch` and one-shot CLI commands share it).
"""

import asyncio
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from filelock import FileLock, Timeout
from structlog import get_logger

from codex_switcher.accounts.constants import PRIVATE_DIR_MODE
from codex_switcher.exceptions import BusyError, StoreLockedError


logger = get_logger(__name__)

DEFAULT_LOCK_TIMEOUT_SECONDS = 5.0


class RefreshLockManager:
    """Registry of lazily created per-account asyncio locks."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, account_id: str) -> asyncio.Lock:
        # No await between lookup and insert, so this is atomic on the loop
        lock = self._locks.get(account_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[account_id] = lock
        return lock

    def is_locked(self, account_id: str) -> bool:
        lock = self._locks.get(account_id)
        return lock is not None and lock.locked()

    async def acquire(
        self, account_id: str, timeout: float = DEFAULT_LOCK_TIMEOUT_SECONDS
    ) -> bool:
        """Take the lock for an account, waiting at most ``timeout`` seconds.

        Returns:
            True if acquired, False on timeout
        """
        lock = self._lock_for(account_id)
        try:
            await asyncio.wait_for(lock.acquire(), timeout=timeout)
        except TimeoutError:
            logger.warning("refresh_lock_timeout", account_id=account_id, timeout=timeout)
            return False
        return True

    def release(self, account_id: str) -> None:
        """Release the lock; a no-op if it is not held."""
        lock = self._locks.get(account_id)
        if lock is not None and lock.locked():
            lock.release()

    @asynccontextmanager
    async def hold(
        self, account_id: str, timeout: float = DEFAULT_LOCK_TIMEOUT_SECONDS
    ) -> AsyncIterator[None]:
        """Hold the lock for the block.

        Raises:
            BusyError: If the lock could not be acquired in time
        """
        if not await self.acquire(account_id, timeout):
            raise BusyError(account_id)
        try:
            yield
        finally:
            self.release(account_id)


class StoreFileLock:
    """Cross-process lock on the accounts file, held next to it as ``<name>.lock``.

    Acquisition polls non-blocking attempts so the event loop keeps running
    while another process holds the lock.
    """

    POLL_SECONDS = 0.05

    def __init__(self, store_path: Path) -> None:
        self.path = store_path.with_name(f"{store_path.name}.lock")
        self._lock = FileLock(str(self.path))

    @asynccontextmanager
    async def hold(
        self, timeout: float = DEFAULT_LOCK_TIMEOUT_SECONDS
    ) -> AsyncIterator[None]:
        """Hold the file lock for the block.

        Raises:
            StoreLockedError: If another process keeps it longer than ``timeout``
        """
        self.path.parent.mkdir(mode=PRIVATE_DIR_MODE, parents=True, exist_ok=True)
        deadline = time.monotonic() + timeout
        while True:
            try:
                self._lock.acquire(timeout=0)
                break
            except Timeout:
                if time.monotonic() >= deadline:
                    logger.warning("store_file_lock_timeout", path=str(self.path))
                    raise StoreLockedError(str(self.path)) from None
                await asyncio.sleep(self.POLL_SECONDS)

        try:
            yield
        finally:
            self._lock.release()
