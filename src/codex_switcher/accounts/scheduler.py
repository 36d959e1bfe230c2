"""Background sync scheduler for the current account.

Periodically pulls ~/.codex/auth.json into the store record of the current
account, so tokens rotated by the Codex CLI are not lost when switching away.
Only the current account is ever touched.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from structlog import get_logger

from codex_switcher.accounts.constants import ACCOUNTS_UPDATED_EVENT
from codex_switcher.accounts.external import read_external_auth
from codex_switcher.accounts.identity import identities_match
from codex_switcher.accounts.models import StoreSettings
from codex_switcher.accounts.sync import sync_account_from_external
from codex_switcher.exceptions import SwitcherError


if TYPE_CHECKING:
    from codex_switcher.services.state import AppState


logger = get_logger(__name__)

DISABLED_POLL_SECONDS = 60.0


class BackgroundSyncScheduler:
    """Start/stop-able task that reconciles the current account on an interval.

    While background refresh is disabled the loop only polls the setting every
    ``disabled_poll_seconds``. ``stop()`` cancels the task, including any
    sleep in progress.
    """

    def __init__(
        self,
        state: AppState,
        disabled_poll_seconds: float = DISABLED_POLL_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize the scheduler.

        Args:
            state: Application state shared with the command layer
            disabled_poll_seconds: Recheck period while the feature is off
            sleep: Sleep coroutine, injectable for tests
        """
        self.state = state
        self.disabled_poll_seconds = disabled_poll_seconds
        self._sleep = sleep
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the loop. Calling it while running does nothing."""
        if self.is_running:
            logger.warning("sync_scheduler_already_running")
            return

        self._task = asyncio.create_task(self._run(), name="codex-switcher-sync")
        logger.info("sync_scheduler_started")

    async def stop(self) -> None:
        """Cancel the loop and wait for it to finish."""
        task = self._task
        self._task = None
        if task is None:
            return

        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("sync_scheduler_stopped")

    async def _read_settings(self) -> StoreSettings:
        """Settings as currently on disk; another process may have changed them."""
        async with self.state.transaction() as store:
            return store.settings

    async def _run(self) -> None:
        while True:
            try:
                settings = await self._read_settings()
            except SwitcherError as e:
                logger.warning("sync_settings_unreadable", error=str(e))
                await self._sleep(self.disabled_poll_seconds)
                continue

            if not settings.background_refresh:
                await self._sleep(self.disabled_poll_seconds)
                continue

            try:
                await self.run_once()
            except (SwitcherError, OSError) as e:
                logger.error("sync_cycle_failed", error=str(e))

            await self._sleep(max(settings.effective_interval_minutes(), 1) * 60)

    async def run_once(self) -> bool:
        """Run one reconciliation pass.

        Returns:
            True if the current account was updated and saved
        """
        try:
            external = await asyncio.to_thread(
                read_external_auth, self.state.settings.auth_path
            )
        except SwitcherError as e:
            logger.debug("sync_skipped_no_external_auth", error=str(e))
            return False

        async with self.state.transaction() as store:
            account = store.current_account()
            if account is None:
                return False

            if not identities_match(account.auth_json, external):
                logger.info("sync_skipped_identity_mismatch", account_id=account.id)
                return False

            if account.auth_json == external:
                return False

            if not sync_account_from_external(store, account.id, external):
                return False

            self.state.save()
            account_id = account.id

        logger.info("current_account_synced", account_id=account_id)
        self.state.emit(ACCOUNTS_UPDATED_EVENT, {"account_id": account_id})
        return True
