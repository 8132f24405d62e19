"""Daemon process: keeps decay, reminders and sync running in the background.

Usage: python -m remember serve

Manages:
- Journal lifecycle (store, remote)
- Scheduler (decay refresh, reminders, sync)
- PID file (prevent duplicate instances)
- Graceful shutdown (SIGTERM/SIGINT)
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys

from remember.config import RememberConfig, load_config
from remember.core import Journal
from remember.journal.risk import NotificationRequest
from remember.scheduler.jobs import Scheduler
from remember.sync.remote import DirectoryRemote, HttpRemote, Remote

logger = logging.getLogger(__name__)


def log_notification(request: NotificationRequest) -> None:
    """Default reminder sink: delivery is left to whatever tails the log."""
    logger.info("Reminder: %s. %s", request.title, request.body)


class JournalDaemon:
    """Always-on daemon process."""

    def __init__(self, config: RememberConfig | None = None) -> None:
        self.config = config or load_config()
        self._shutdown_event = asyncio.Event()

    # ── PID file management ──────────────────────────────────

    def _write_pid(self) -> None:
        self.config.pid_file.parent.mkdir(parents=True, exist_ok=True)
        self.config.pid_file.write_text(str(os.getpid()))
        logger.info("PID file written: %s (pid=%d)", self.config.pid_file, os.getpid())

    def _remove_pid(self) -> None:
        if self.config.pid_file.exists():
            self.config.pid_file.unlink()

    def _check_existing(self) -> None:
        if not self.config.pid_file.exists():
            return
        try:
            pid = int(self.config.pid_file.read_text().strip())
            os.kill(pid, 0)  # Check if process exists
            print(f"remember daemon already running (pid={pid}). Exiting.", file=sys.stderr)
            sys.exit(1)
        except (ProcessLookupError, ValueError):
            # Stale PID file, remove it
            self._remove_pid()

    # ── Signal handling ──────────────────────────────────────

    def _setup_signals(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._handle_signal, sig)

    def _handle_signal(self, sig: signal.Signals) -> None:
        logger.info("Received %s, shutting down...", sig.name)
        self._shutdown_event.set()

    # ── Build components ─────────────────────────────────────

    def _build_journal(self) -> Journal:
        return Journal(
            self.config,
            request_notification=log_notification,
            remote=self._build_remote(),
        )

    def _build_remote(self) -> Remote | None:
        sync = self.config.sync
        if not sync.backend:
            return None
        if sync.backend == "directory":
            if sync.remote_dir is None:
                raise ValueError("sync.remote_dir is required for the directory backend")
            return DirectoryRemote(sync.remote_dir)
        if sync.backend == "http":
            if not sync.base_url:
                raise ValueError("sync.base_url is required for the http backend")
            return HttpRemote(sync.base_url, sync.token)
        raise ValueError(f"Unknown sync backend: {sync.backend}")

    # ── Main run loop ────────────────────────────────────────

    async def run(self) -> None:
        self._check_existing()
        self._write_pid()
        self._setup_signals()

        journal = self._build_journal()
        scheduler = Scheduler(journal, self.config)

        logger.info(
            "remember daemon starting (data=%s, sync=%s)",
            self.config.data_dir,
            self.config.sync.backend or "off",
        )

        try:
            await scheduler.start(self._shutdown_event)
        except asyncio.CancelledError:
            pass
        finally:
            await journal.close()
            self._remove_pid()
            logger.info("remember daemon stopped.")
