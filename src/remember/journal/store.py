"""Entry store, the single writer of journal entries.

Markdown files are the source of truth: one file per entry with YAML
frontmatter for metadata and the body for content. An in-memory index (built
once at startup, replaced slot-by-slot on writes) serves every read, and decay
is recomputed at read time from the current settings.

If the data directory cannot be opened or written the store keeps running in
memory only; everything written from then on is lost on restart.
"""

from __future__ import annotations

import hashlib
import logging
import shutil
import tempfile
import threading
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

import frontmatter

from remember.errors import AttachmentIOFailed, NotFound, StorageUnavailable, ValidationFailed
from remember.events import EventBus, EventKind, JournalEvent
from remember.journal.decay import DEFAULT_RATE, decay
from remember.journal.entry import (
    DecayTimeUnit,
    Entry,
    MemoryQuestion,
    format_timestamp,
    new_entry_id,
)
from remember.settings import Settings
from remember.storage import atomic_write_bytes, atomic_write_text, read_json, write_json

logger = logging.getLogger(__name__)

MAX_VERSIONS_PER_ENTRY = 10
BLOB_DIGEST_LENGTH = 12
TOMBSTONES_FILENAME = ".tombstones.json"


@dataclass
class StoreSnapshot:
    """Point-in-time copy of the store handed to a sync batch."""

    entries: list[Entry]
    pending_deletions: list[str]


class EntryStore:
    """Read/write access to journal entries, tags and attachment blobs."""

    def __init__(
        self,
        root: Path | None,
        settings: Settings | None = None,
        *,
        rate: int = DEFAULT_RATE,
        clock: Callable[[], datetime] = datetime.now,
        events: EventBus | None = None,
    ) -> None:
        self.root = root
        self.settings = settings or Settings()
        self.rate = rate
        self.events = events or EventBus()
        self._clock = clock
        self._index: dict[str, Entry] = {}
        self._tombstones: dict[str, dict] = {}
        self._lock = threading.RLock()
        self._scratch_dir: Path | None = None
        self.degraded = root is None
        if root is not None:
            try:
                self._ensure_initialized()
                self._build_index()
            except StorageUnavailable as e:
                self._degrade(e)

    # ── Initialization ───────────────────────────────────────

    def _ensure_initialized(self) -> None:
        """Ensure base directories exist. Idempotent."""
        try:
            for d in ["entries", "attachments", ".versions"]:
                (self.root / d).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageUnavailable(f"Cannot open journal at {self.root}: {e}") from e

    def _build_index(self) -> None:
        """Scan entries/ once at startup."""
        self._index.clear()
        self._tombstones = read_json(self.root / TOMBSTONES_FILENAME, default={}) or {}
        for md_file in (self.root / "entries").glob("*.md"):
            entry = self._parse_entry(md_file)
            if entry is None or entry.id in self._tombstones:
                continue
            self._index[entry.id] = entry
        logger.info("Loaded %d entries from %s", len(self._index), self.root)

    def _parse_entry(self, path: Path) -> Entry | None:
        try:
            post = frontmatter.load(str(path))
            return Entry.from_metadata(dict(post.metadata), post.content)
        except Exception as e:
            logger.warning("Skipping unreadable entry file %s: %s", path, e)
            return None

    def _degrade(self, error: Exception) -> None:
        if not self.degraded:
            logger.warning("Storage unavailable, keeping entries in memory only: %s", error)
        self.degraded = True

    # ── Paths & persistence ──────────────────────────────────

    def _entry_path(self, entry_id: str) -> Path:
        return self.root / "entries" / f"{entry_id}.md"

    def blob_dir(self, entry_id: str) -> Path:
        """Directory owning an entry's attachment blobs."""
        if not self.degraded:
            return self.root / "attachments" / entry_id
        if self._scratch_dir is None:
            self._scratch_dir = Path(tempfile.mkdtemp(prefix="remember-blobs-"))
        return self._scratch_dir / entry_id

    def _persist(self, entry: Entry) -> None:
        if self.degraded:
            return
        post = frontmatter.Post(entry.content)
        post.metadata.update(entry.to_metadata())
        try:
            atomic_write_text(self._entry_path(entry.id), frontmatter.dumps(post) + "\n")
        except StorageUnavailable as e:
            self._degrade(e)

    def _save_tombstones(self) -> None:
        if self.degraded:
            return
        try:
            write_json(self.root / TOMBSTONES_FILENAME, self._tombstones)
        except StorageUnavailable as e:
            self._degrade(e)

    def _backup(self, entry_id: str) -> None:
        """Backup to .versions/, keep at most 10 versions per entry."""
        if self.degraded:
            return
        path = self._entry_path(entry_id)
        if not path.exists():
            return
        versions_dir = self.root / ".versions"
        ts = self._clock().strftime("%Y%m%dT%H%M%S%f")
        try:
            versions_dir.mkdir(exist_ok=True)
            (versions_dir / f"{entry_id}-{ts}.md").write_bytes(path.read_bytes())
            old = sorted(versions_dir.glob(f"{entry_id}-*.md"))
            for f in old[:-MAX_VERSIONS_PER_ENTRY]:
                f.unlink()
        except OSError as e:
            logger.warning("Backup of %s failed: %s", entry_id, e)

    # ── Attachments ──────────────────────────────────────────

    def _import_attachments(
        self,
        entry_id: str,
        attachments: Mapping[str, Path],
        existing: Mapping[str, Path] | None = None,
    ) -> dict[str, Path]:
        """Copy new attachment files into the entry's blob directory.

        Attachments that cannot be read are dropped; the entry is still saved.
        """
        existing = existing or {}
        imported: dict[str, Path] = {}
        for attachment_id, source in attachments.items():
            source = Path(source)
            if existing.get(attachment_id) == source:
                imported[attachment_id] = source
                continue
            try:
                imported[attachment_id] = self._copy_blob(entry_id, attachment_id, source)
            except AttachmentIOFailed as e:
                logger.warning("Dropping attachment of entry %s: %s", entry_id, e)
        return imported

    def _copy_blob(self, entry_id: str, attachment_id: str, source: Path) -> Path:
        try:
            data = source.read_bytes()
        except OSError as e:
            raise AttachmentIOFailed(attachment_id, str(e)) from e
        return self.import_blob(entry_id, attachment_id, data, source.suffix)

    def import_blob(
        self, entry_id: str, attachment_id: str, data: bytes, suffix: str = ""
    ) -> Path:
        """Write blob bytes into the entry's blob directory and return the path.

        The file name carries a content digest, so replacing an attachment
        with different bytes always yields a new path.
        """
        digest = hashlib.sha256(data).hexdigest()[:BLOB_DIGEST_LENGTH]
        dest = self.blob_dir(entry_id) / f"{attachment_id}-{digest}{suffix}"
        try:
            atomic_write_bytes(dest, data)
        except StorageUnavailable as e:
            raise AttachmentIOFailed(attachment_id, str(e)) from e
        return dest

    def _release_attachments(
        self, entry_id: str, attachments: Mapping[str, Path], keep: Mapping[str, Path]
    ) -> None:
        """Delete owned blobs that ``keep`` no longer references."""
        owned = self.blob_dir(entry_id)
        kept = set(keep.values())
        for path in attachments.values():
            if path in kept or path.parent != owned:
                continue
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning("Failed to release blob %s: %s", path, e)

    def release_unreferenced(self, entry_id: str, attachments: Mapping[str, Path]) -> None:
        """Delete imported blobs the stored entry does not reference."""
        with self._lock:
            current = self._index.get(entry_id)
            self._release_attachments(
                entry_id, attachments, keep=current.attachments if current else {}
            )

    def _release_blob_dir(self, entry_id: str) -> None:
        blob_dir = self.blob_dir(entry_id)
        if not blob_dir.exists():
            return
        try:
            shutil.rmtree(blob_dir)
        except OSError as e:
            logger.warning("Failed to release blobs of %s: %s", entry_id, e)

    # ── Reads ────────────────────────────────────────────────

    def _read(self, entry: Entry, now: datetime, unit: DecayTimeUnit) -> Entry:
        """Copy with live decay; attachments whose blob is gone are omitted."""
        return entry.copy(
            decay_level=decay(entry.decay_since, unit, now, self.rate),
            attachments={k: p for k, p in entry.attachments.items() if p.exists()},
        )

    def list(self) -> list[Entry]:
        """All entries, newest first, with decay recomputed."""
        with self._lock:
            entries = [*self._index.values()]
        now = self._clock()
        unit = self.settings.decay_time_unit
        result = [self._read(e, now, unit) for e in entries]
        result.sort(key=lambda e: e.created_at, reverse=True)
        return result

    def get(self, entry_id: str) -> Entry:
        with self._lock:
            entry = self._index.get(entry_id)
        if entry is None:
            raise NotFound(entry_id)
        return self._read(entry, self._clock(), self.settings.decay_time_unit)

    def all_tags(self) -> list[str]:
        """Sorted union of every entry's tags."""
        with self._lock:
            entries = [*self._index.values()]
        tags: set[str] = set()
        for entry in entries:
            tags |= entry.tags
        return sorted(tags)

    # ── Writes ───────────────────────────────────────────────

    def create(
        self,
        title: str,
        content: str = "",
        tags: Iterable[str] = (),
        attachments: Mapping[str, Path] | None = None,
        questions: Iterable[MemoryQuestion] = (),
    ) -> Entry:
        """Save a new entry. Raises ValidationFailed on an empty title."""
        title = _validate_title(title)
        with self._lock:
            now = self._clock()
            entry_id = self._new_id()
            entry = Entry(
                id=entry_id,
                title=title,
                content=content,
                created_at=now,
                modified_at=now,
                tags=_normalize_tags(tags),
                attachments=self._import_attachments(entry_id, attachments or {}),
                questions=tuple(questions),
            )
            self._index[entry_id] = entry
            self._persist(entry)
        logger.info("Created entry %s (%s)", entry_id, title)
        self._emit(EventKind.ENTRIES_CHANGED, entry_id)
        return self._read(entry, now, self.settings.decay_time_unit)

    def update(self, entry: Entry) -> Entry:
        """Replace the editable fields of an existing entry.

        ``id``, ``created_at`` and ``restored_at`` always come from the stored
        record. An update that changes nothing writes nothing.
        """
        title = _validate_title(entry.title)
        with self._lock:
            current = self._index.get(entry.id)
            if current is None:
                raise NotFound(entry.id)
            now = self._clock()
            attachments = self._import_attachments(
                entry.id, entry.attachments, existing=current.attachments
            )
            updated = current.copy(
                title=title,
                content=entry.content,
                tags=_normalize_tags(entry.tags),
                attachments=attachments,
                questions=tuple(entry.questions),
            )
            if updated.same_content(current):
                return self._read(current, now, self.settings.decay_time_unit)
            updated.modified_at = now
            self._backup(entry.id)
            self._index[entry.id] = updated
            self._persist(updated)
            self._release_attachments(entry.id, current.attachments, keep=attachments)
        logger.info("Updated entry %s", entry.id)
        self._emit(EventKind.ENTRIES_CHANGED, entry.id)
        return self._read(updated, now, self.settings.decay_time_unit)

    def restore(self, entry_id: str, *, via_challenge: bool = False) -> Entry:
        """Reset the decay clock to now. Unconditional for any existing entry."""
        with self._lock:
            current = self._index.get(entry_id)
            if current is None:
                raise NotFound(entry_id)
            now = self._clock()
            restored = current.copy(
                restored_at=max(now, current.created_at),
                modified_at=now,
                decay_level=0,
            )
            self._index[entry_id] = restored
            self._persist(restored)
        logger.info("Restored entry %s", entry_id)
        self._emit(EventKind.ENTRY_RESTORED, entry_id, via_challenge=via_challenge)
        self._emit(EventKind.ENTRIES_CHANGED, entry_id)
        return self._read(restored, now, self.settings.decay_time_unit)

    def delete(self, entry_id: str) -> None:
        """Remove an entry and its blobs. Deleting a missing id is a no-op."""
        with self._lock:
            current = self._index.pop(entry_id, None)
            if current is None:
                logger.debug("Entry %s already absent", entry_id)
                return
            self._tombstones[entry_id] = {
                "deleted": format_timestamp(self._clock()),
                "synced": False,
            }
            self._save_tombstones()
            if not self.degraded:
                self._backup(entry_id)
                try:
                    self._entry_path(entry_id).unlink(missing_ok=True)
                except OSError as e:
                    logger.warning("Failed to remove entry file %s: %s", entry_id, e)
            self._release_blob_dir(entry_id)
        logger.info("Deleted entry %s", entry_id)
        self._emit(EventKind.ENTRIES_CHANGED, entry_id)

    def _new_id(self) -> str:
        while True:
            entry_id = new_entry_id()
            if entry_id not in self._index and entry_id not in self._tombstones:
                return entry_id

    # ── Sync support ─────────────────────────────────────────

    def snapshot(self) -> StoreSnapshot:
        """Copy of the raw records and pending remote deletions."""
        with self._lock:
            return StoreSnapshot(
                entries=[e.copy() for e in self._index.values()],
                pending_deletions=self.pending_deletions(),
            )

    def pending_deletions(self) -> list[str]:
        with self._lock:
            return sorted(k for k, v in self._tombstones.items() if not v.get("synced"))

    def clear_deletion(self, entry_id: str) -> None:
        """Mark a tombstone as propagated to the remote. The id stays reserved."""
        with self._lock:
            tombstone = self._tombstones.get(entry_id)
            if tombstone is None or tombstone.get("synced"):
                return
            tombstone["synced"] = True
            self._save_tombstones()

    def is_tombstoned(self, entry_id: str) -> bool:
        with self._lock:
            return entry_id in self._tombstones

    def apply_remote(self, entry: Entry) -> bool:
        """Upsert a record pulled from the remote.

        Tombstoned ids are never resurrected, and a local copy modified at or
        after the remote one wins. A rejected record's downloaded blobs are
        released. Returns True when the store changed.
        """
        with self._lock:
            current = self._index.get(entry.id)
            if entry.id in self._tombstones or (
                current is not None and current.modified_at >= entry.modified_at
            ):
                self.release_unreferenced(entry.id, entry.attachments)
                return False
            incoming = entry.copy(tags=_normalize_tags(entry.tags))
            self._index[entry.id] = incoming
            self._persist(incoming)
            if current is not None:
                self._release_attachments(entry.id, current.attachments, keep=incoming.attachments)
        logger.info("Applied remote entry %s", entry.id)
        self._emit(EventKind.ENTRIES_CHANGED, entry.id, source="remote")
        return True

    # ── Events ───────────────────────────────────────────────

    def _emit(self, kind: EventKind, entry_id: str | None = None, **payload) -> None:
        self.events.emit(JournalEvent(kind=kind, at=self._clock(), entry_id=entry_id, payload=payload))


def _validate_title(title: str) -> str:
    if not title or not title.strip():
        raise ValidationFailed("Entry title must not be empty")
    return title


def _normalize_tags(tags: Iterable[str]) -> frozenset[str]:
    return frozenset(t.strip() for t in tags if t and t.strip())
