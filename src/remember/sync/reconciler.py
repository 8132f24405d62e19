"""Reconcile the local entry store with a remote copy.

Policy: the remote holds the union of both sides. Local-only records are
uploaded, remote-only records are materialized locally, and when both exist
the side with the later ``modified_at`` (the most recent explicit user write)
wins. Deleted ids are tombstoned locally and never resurrected.

A pass works on a snapshot taken at its start, so local writes racing with it
are picked up by the next pass. Every remote call is bounded by a timeout and
failures are logged and retried on the next tick. Cancellation is honoured
between records only: a record's blobs are uploaded before the record that
references them, and downloaded before the local record is written.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import TypeVar

from remember.errors import AttachmentIOFailed, RemoteUnavailable
from remember.journal.entry import Entry
from remember.journal.store import EntryStore
from remember.sync.remote import Remote, RemoteEntry, blob_key

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class SyncReport:
    """Outcome of one sync pass."""

    uploaded: int = 0
    downloaded: int = 0
    deleted_remote: int = 0
    blobs_uploaded: int = 0
    blobs_skipped: int = 0
    failed: list[str] = field(default_factory=list)
    aborted: bool = False
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return not self.failed and not self.aborted


class SyncReconciler:
    """Brings an EntryStore and a Remote into agreement."""

    def __init__(
        self,
        store: EntryStore,
        remote: Remote,
        current_user_id: Callable[[], str | None],
        *,
        timeout: float = 30.0,
    ) -> None:
        self.store = store
        self.remote = remote
        self._current_user_id = current_user_id
        self.timeout = timeout
        self._running = asyncio.Lock()

    async def _call(self, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError:
            raise RemoteUnavailable(f"{self.remote.name} remote timed out after {self.timeout}s")

    # ── Record-level operations ──────────────────────────────

    async def fetch_remote(self, user_id: str) -> list[RemoteEntry]:
        """Whole-record pull of everything the user owns remotely."""
        records = await self._call(self.remote.fetch_records(user_id))
        entries = []
        for data in records:
            try:
                entries.append(RemoteEntry.from_dict(data))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Ignoring malformed remote record: %s", e)
        return entries

    async def upload(
        self,
        user_id: str,
        entry: Entry,
        previous: RemoteEntry | None = None,
        report: SyncReport | None = None,
    ) -> RemoteEntry:
        """Idempotent upsert of one entry.

        Blobs already present remotely are skipped. The record is written only
        once every blob it references is in place; blobs the previous version
        referenced but this one does not are removed afterwards.
        """
        report = report or SyncReport()
        previous_keys = set(previous.attachments.values()) if previous else set()
        keys: dict[str, str] = {}
        for attachment_id, path in sorted(entry.attachments.items()):
            try:
                data = await asyncio.to_thread(path.read_bytes)
            except OSError as e:
                logger.warning(
                    "Not uploading attachment: %s", AttachmentIOFailed(attachment_id, str(e))
                )
                continue
            key = blob_key(entry.id, data, path.suffix)
            if key in previous_keys or await self._call(self.remote.has_blob(user_id, key)):
                report.blobs_skipped += 1
            else:
                await self._call(self.remote.put_blob(user_id, key, data))
                report.blobs_uploaded += 1
            keys[attachment_id] = key

        record = RemoteEntry.from_entry(entry, keys, user_id)
        await self._call(self.remote.put_record(user_id, record.to_dict()))

        for stale in previous_keys - set(keys.values()):
            await self._call(self.remote.delete_blob(user_id, stale))
        logger.debug("Uploaded entry %s (%d attachments)", entry.id, len(keys))
        return record

    async def delete(self, user_id: str, entry_id: str) -> None:
        """Remove an entry remotely: blobs first, then the record. Absent is success."""
        data = await self._call(self.remote.get_record(user_id, entry_id))
        if data is not None:
            for key in (data.get("attachments") or {}).values():
                await self._call(self.remote.delete_blob(user_id, key))
        await self._call(self.remote.delete_record(user_id, entry_id))
        logger.debug("Deleted remote entry %s", entry_id)

    async def materialize(self, user_id: str, remote: RemoteEntry) -> bool:
        """Download a remote record's blobs, then write the record locally.

        Raises if any blob cannot be fetched or stored, leaving the local
        record untouched so the next pass retries it.
        """
        attachments = {}
        try:
            for attachment_id, key in remote.attachments.items():
                data = await self._call(self.remote.get_blob(user_id, key))
                attachments[attachment_id] = await asyncio.to_thread(
                    self.store.import_blob,
                    remote.id,
                    attachment_id,
                    data,
                    PurePosixPath(key).suffix,
                )
        except (RemoteUnavailable, AttachmentIOFailed):
            self.store.release_unreferenced(remote.id, attachments)
            raise
        return self.store.apply_remote(remote.to_entry(attachments))

    # ── Full pass ────────────────────────────────────────────

    async def sync(self, cancel: asyncio.Event | None = None) -> SyncReport:
        """Run one reconciliation pass. Never raises for remote failures."""
        report = SyncReport()
        user_id = self._current_user_id()
        if not user_id:
            logger.debug("No signed-in user, sync disabled")
            report.skipped = True
            return report

        if self._running.locked():
            logger.debug("Sync already in progress, skipping")
            report.skipped = True
            return report

        async with self._running:
            snapshot = self.store.snapshot()
            try:
                remote_entries = await self.fetch_remote(user_id)
            except RemoteUnavailable as e:
                logger.warning("Sync postponed: %s", e)
                report.failed.append("*")
                return report
            remote_by_id = {r.id: r for r in remote_entries}

            for entry_id in snapshot.pending_deletions:
                if _cancelled(cancel):
                    report.aborted = True
                    break
                remote_by_id.pop(entry_id, None)
                try:
                    await self.delete(user_id, entry_id)
                except RemoteUnavailable as e:
                    logger.warning("Remote delete of %s failed: %s", entry_id, e)
                    report.failed.append(entry_id)
                    continue
                self.store.clear_deletion(entry_id)
                report.deleted_remote += 1

            if not report.aborted:
                await self._reconcile_local(user_id, snapshot.entries, remote_by_id, report, cancel)
            if not report.aborted:
                await self._reconcile_remote_only(user_id, remote_by_id, report, cancel)

        if report.aborted:
            logger.info("Sync aborted at a record boundary")
        logger.info(
            "Sync finished: %d up, %d down, %d deleted, %d failed",
            report.uploaded,
            report.downloaded,
            report.deleted_remote,
            len(report.failed),
        )
        return report

    async def _reconcile_local(
        self,
        user_id: str,
        entries: list[Entry],
        remote_by_id: dict[str, RemoteEntry],
        report: SyncReport,
        cancel: asyncio.Event | None,
    ) -> None:
        for local in entries:
            if _cancelled(cancel):
                report.aborted = True
                return
            remote = remote_by_id.pop(local.id, None)
            try:
                if remote is None or _local_wins(local, remote):
                    await self.upload(user_id, local, remote, report)
                    report.uploaded += 1
                elif remote.modified_at > local.modified_at:
                    if await self.materialize(user_id, remote):
                        report.downloaded += 1
            except (RemoteUnavailable, AttachmentIOFailed) as e:
                logger.warning("Sync of entry %s failed: %s", local.id, e)
                report.failed.append(local.id)

    async def _reconcile_remote_only(
        self,
        user_id: str,
        remote_by_id: dict[str, RemoteEntry],
        report: SyncReport,
        cancel: asyncio.Event | None,
    ) -> None:
        for remote in remote_by_id.values():
            if _cancelled(cancel):
                report.aborted = True
                return
            try:
                if self.store.is_tombstoned(remote.id):
                    await self.delete(user_id, remote.id)
                    self.store.clear_deletion(remote.id)
                    report.deleted_remote += 1
                elif await self.materialize(user_id, remote):
                    report.downloaded += 1
            except (RemoteUnavailable, AttachmentIOFailed) as e:
                logger.warning("Sync of remote entry %s failed: %s", remote.id, e)
                report.failed.append(remote.id)


def _cancelled(cancel: asyncio.Event | None) -> bool:
    return cancel is not None and cancel.is_set()


def _local_wins(local: Entry, remote: RemoteEntry) -> bool:
    """Local is newer, or equal but holding attachments the remote never got."""
    if local.modified_at > remote.modified_at:
        return True
    if local.modified_at == remote.modified_at:
        present = {k for k, p in local.attachments.items() if p.exists()}
        return bool(present - set(remote.attachments))
    return False
