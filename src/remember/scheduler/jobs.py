"""Scheduler for periodic tasks using pure asyncio.

Jobs:
- Refresh: recompute decay, track the at-risk set, request reminders
- Sync: reconcile with the remote, once at start-up and then every interval
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from remember.config import RememberConfig
    from remember.core import Journal

logger = logging.getLogger(__name__)


class Scheduler:
    """Simple asyncio-based scheduler for periodic tasks."""

    def __init__(self, journal: Journal, config: RememberConfig) -> None:
        self._journal = journal
        self._refresh_interval = config.scheduler.refresh_interval
        self._sync_interval = config.sync.interval
        self._sync_task: asyncio.Task | None = None
        self._sync_cancel = asyncio.Event()
        self._last_sync: float | None = None

    async def start(self, shutdown_event: asyncio.Event) -> None:
        """Run scheduled jobs until shutdown_event is set."""
        logger.info(
            "Scheduler started (refresh=%ds, sync=%ds)",
            self._refresh_interval,
            self._sync_interval,
        )

        self._refresh()
        self.trigger_sync()

        while not shutdown_event.is_set():
            try:
                await asyncio.wait_for(
                    shutdown_event.wait(),
                    timeout=self._refresh_interval,
                )
                break  # shutdown requested
            except asyncio.TimeoutError:
                pass  # interval elapsed, run jobs

            self._refresh()

            if self._sync_due():
                self.trigger_sync()

        await self.stop_sync()
        logger.info("Scheduler stopped.")

    def _refresh(self) -> None:
        try:
            self._journal.refresh()
        except Exception as e:
            logger.error("Refresh failed: %s", e)

    def _sync_due(self) -> bool:
        if self._last_sync is None:
            return True
        return time.monotonic() - self._last_sync >= self._sync_interval

    def trigger_sync(self) -> asyncio.Task | None:
        """Start a background sync pass unless one is still running."""
        if self._journal.reconciler is None:
            return None
        if self._sync_task is not None and not self._sync_task.done():
            logger.debug("Previous sync still running")
            return self._sync_task
        self._last_sync = time.monotonic()
        self._sync_cancel.clear()
        self._sync_task = asyncio.create_task(self._sync())
        return self._sync_task

    async def _sync(self) -> None:
        try:
            report = await self._journal.sync(self._sync_cancel)
            if report.failed:
                logger.warning("Sync left %d records for the next pass", len(report.failed))
        except Exception as e:
            logger.error("Sync failed: %s", e)

    async def stop_sync(self) -> None:
        """Ask a running sync to stop at the next record boundary and wait for it."""
        if self._sync_task is None or self._sync_task.done():
            return
        self._sync_cancel.set()
        await self._sync_task
