"""Tests for the entry store."""

from __future__ import annotations

from pathlib import Path

import frontmatter
import pytest

from conftest import T0, FakeClock
from remember.errors import NotFound, ValidationFailed
from remember.events import EventKind
from remember.journal.entry import DecayTimeUnit, MemoryQuestion
from remember.journal.store import EntryStore
from remember.settings import Settings


@pytest.fixture
def store(tmp_path: Path, clock: FakeClock) -> EntryStore:
    return EntryStore(tmp_path / "journal", Settings(), clock=clock)


@pytest.fixture
def photo(tmp_path: Path) -> Path:
    path = tmp_path / "beach.jpg"
    path.write_bytes(b"\xff\xd8 fake jpeg")
    return path


class TestInitialization:
    def test_creates_directory_structure(self, store: EntryStore):
        assert (store.root / "entries").is_dir()
        assert (store.root / "attachments").is_dir()
        assert (store.root / ".versions").is_dir()
        assert not store.degraded

    def test_unwritable_root_falls_back_to_memory(self, tmp_path: Path, clock: FakeClock):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("occupied", encoding="utf-8")
        store = EntryStore(blocker / "journal", Settings(), clock=clock)
        assert store.degraded
        entry = store.create("Still works", "kept in memory")
        assert [e.id for e in store.list()] == [entry.id]

    def test_reload_from_disk(self, tmp_path: Path, clock: FakeClock):
        first = EntryStore(tmp_path / "journal", Settings(), clock=clock)
        created = first.create(
            "Trip",
            "Went to the coast",
            tags=["travel", "summer"],
            questions=[MemoryQuestion("Which coast?", "West")],
        )
        second = EntryStore(tmp_path / "journal", Settings(), clock=clock)
        loaded = second.get(created.id)
        assert loaded.title == "Trip"
        assert loaded.content == "Went to the coast"
        assert loaded.tags == frozenset({"travel", "summer"})
        assert loaded.questions == (MemoryQuestion("Which coast?", "West"),)
        assert loaded.created_at == created.created_at

    def test_skips_unreadable_files(self, store: EntryStore, clock: FakeClock):
        (store.root / "entries" / "broken.md").write_text("no frontmatter", encoding="utf-8")
        reloaded = EntryStore(store.root, Settings(), clock=clock)
        assert reloaded.list() == []


class TestCreate:
    def test_assigns_identity(self, store: EntryStore):
        entry = store.create("First", "hello")
        assert entry.id
        assert entry.created_at == T0
        assert entry.restored_at is None
        assert entry.decay_level == 0

    def test_writes_frontmatter_file(self, store: EntryStore):
        entry = store.create("First", "hello", tags=["a"])
        post = frontmatter.load(str(store.root / "entries" / f"{entry.id}.md"))
        assert post["title"] == "First"
        assert post["tags"] == ["a"]
        assert post.content == "hello"

    @pytest.mark.parametrize("title", ["", "   "])
    def test_rejects_empty_title(self, store: EntryStore, title: str):
        with pytest.raises(ValidationFailed):
            store.create(title, "content")
        assert store.list() == []
        assert list((store.root / "entries").glob("*.md")) == []

    def test_empty_content_allowed(self, store: EntryStore):
        assert store.create("Only a title").content == ""

    def test_tags_deduplicated_and_case_sensitive(self, store: EntryStore):
        entry = store.create("Tags", tags=["Work", "work", "work", " home ", ""])
        assert entry.tags == frozenset({"Work", "work", "home"})

    def test_ids_unique(self, store: EntryStore):
        ids = {store.create(f"Entry {i}").id for i in range(20)}
        assert len(ids) == 20


class TestList:
    def test_newest_first(self, store: EntryStore, clock: FakeClock):
        old = store.create("Old")
        clock.advance(minutes=5)
        new = store.create("New")
        assert [e.id for e in store.list()] == [new.id, old.id]

    def test_decay_recomputed_on_read(self, store: EntryStore, clock: FakeClock):
        entry = store.create("Fading")
        clock.advance(days=5)
        assert store.get(entry.id).decay_level == 25
        clock.advance(days=15)
        assert store.list()[0].decay_level == 100

    def test_cached_decay_not_trusted(self, store: EntryStore, clock: FakeClock):
        entry = store.create("Cached")
        path = store.root / "entries" / f"{entry.id}.md"
        post = frontmatter.load(str(path))
        post["decay_level"] = 90
        path.write_text(frontmatter.dumps(post), encoding="utf-8")
        reloaded = EntryStore(store.root, Settings(), clock=clock)
        assert reloaded.get(entry.id).decay_level == 0

    def test_unit_change_is_retroactive(self, store: EntryStore, clock: FakeClock):
        entry = store.create("Unit")
        clock.advance(hours=3)
        assert store.get(entry.id).decay_level == 0
        store.settings.set_decay_time_unit(DecayTimeUnit.HOURS)
        assert store.get(entry.id).decay_level == 15

    def test_get_missing(self, store: EntryStore):
        with pytest.raises(NotFound):
            store.get("nope")


class TestUpdate:
    def test_full_replace(self, store: EntryStore, clock: FakeClock):
        entry = store.create("Draft", "v1", tags=["a"])
        clock.advance(minutes=1)
        changed = entry.copy(title="Final", content="v2", tags=frozenset({"b"}))
        updated = store.update(changed)
        assert updated.title == "Final"
        assert updated.content == "v2"
        assert updated.tags == frozenset({"b"})
        assert updated.created_at == entry.created_at
        assert updated.modified_at == clock.now

    def test_identity_fields_kept(self, store: EntryStore, clock: FakeClock):
        entry = store.create("Keep")
        bogus = entry.copy(title="Keep!", created_at=T0.replace(year=2000), restored_at=clock.now)
        updated = store.update(bogus)
        assert updated.created_at == T0
        assert updated.restored_at is None

    def test_missing_id(self, store: EntryStore):
        entry = store.create("Gone")
        store.delete(entry.id)
        with pytest.raises(NotFound):
            store.update(entry)

    def test_rejects_empty_title(self, store: EntryStore):
        entry = store.create("Title")
        with pytest.raises(ValidationFailed):
            store.update(entry.copy(title=""))
        assert store.get(entry.id).title == "Title"

    def test_round_trip_is_noop(self, store: EntryStore, clock: FakeClock):
        store.create("One", "a", tags=["x"])
        entry = store.create("Two", "b", questions=[MemoryQuestion("q", "a")])
        before = store.list()
        events = []
        store.events.subscribe(EventKind.ENTRIES_CHANGED, events.append)
        clock.advance(minutes=1)
        store.update(store.get(entry.id))
        after = store.list()
        assert [(e.id, e.title, e.content, e.tags, e.modified_at) for e in after] == [
            (e.id, e.title, e.content, e.tags, e.modified_at) for e in before
        ]
        assert events == []
        assert list((store.root / ".versions").glob("*.md")) == []

    def test_backups_capped(self, store: EntryStore, clock: FakeClock):
        entry = store.create("Versions", "0")
        for i in range(1, 15):
            clock.advance(seconds=1)
            entry = store.update(entry.copy(content=str(i)))
        versions = list((store.root / ".versions").glob(f"{entry.id}-*.md"))
        assert len(versions) == 10


class TestRestore:
    def test_resets_decay(self, store: EntryStore, clock: FakeClock):
        entry = store.create("Old memory")
        clock.advance(days=30)
        assert store.get(entry.id).decay_level == 100
        store.restore(entry.id)
        assert {e.id: e.decay_level for e in store.list()}[entry.id] == 0

    def test_unconditional_reset(self, store: EntryStore, clock: FakeClock):
        entry = store.create("Fresh")
        clock.advance(minutes=1)
        restored = store.restore(entry.id)
        assert restored.restored_at == clock.now
        assert restored.modified_at == clock.now

    def test_restored_not_before_created(self, store: EntryStore, clock: FakeClock):
        entry = store.create("Skewed")
        clock.advance(hours=-2)
        restored = store.restore(entry.id)
        assert restored.restored_at >= restored.created_at

    def test_missing_id(self, store: EntryStore):
        with pytest.raises(NotFound):
            store.restore("missing")

    def test_emits_restored_event(self, store: EntryStore):
        entry = store.create("Event")
        seen = []
        store.events.subscribe(EventKind.ENTRY_RESTORED, seen.append)
        store.restore(entry.id, via_challenge=True)
        assert len(seen) == 1
        assert seen[0].entry_id == entry.id
        assert seen[0].payload["via_challenge"] is True


class TestDelete:
    def test_removes_entry(self, store: EntryStore):
        entry = store.create("Bye")
        store.delete(entry.id)
        assert store.list() == []
        assert not (store.root / "entries" / f"{entry.id}.md").exists()

    def test_idempotent(self, store: EntryStore):
        keep = store.create("Keep")
        entry = store.create("Bye")
        store.delete(entry.id)
        once = store.list()
        store.delete(entry.id)
        store.delete("never-existed")
        assert [e.id for e in store.list()] == [e.id for e in once] == [keep.id]

    def test_tombstone_survives_reload(self, store: EntryStore, clock: FakeClock):
        entry = store.create("Bye")
        store.delete(entry.id)
        reloaded = EntryStore(store.root, Settings(), clock=clock)
        assert reloaded.is_tombstoned(entry.id)
        assert reloaded.pending_deletions() == [entry.id]

    def test_tombstoned_id_not_resurrected(self, store: EntryStore, clock: FakeClock):
        entry = store.create("Bye")
        store.delete(entry.id)
        assert store.apply_remote(entry.copy(modified_at=clock.advance(days=1))) is False
        assert store.list() == []


class TestAttachments:
    def test_imported_into_store(self, store: EntryStore, photo: Path):
        entry = store.create("Beach", attachments={"p1": photo})
        stored = entry.attachments["p1"]
        assert stored.parent == store.root / "attachments" / entry.id
        assert stored.read_bytes() == photo.read_bytes()

    def test_unreadable_attachment_dropped(self, store: EntryStore, photo: Path, tmp_path: Path):
        entry = store.create(
            "Partial", attachments={"p1": photo, "p2": tmp_path / "missing.jpg"}
        )
        assert set(entry.attachments) == {"p1"}

    def test_removed_attachment_released(self, store: EntryStore, photo: Path):
        entry = store.create("Beach", attachments={"p1": photo})
        blob = entry.attachments["p1"]
        store.update(entry.copy(attachments={}))
        assert not blob.exists()
        assert photo.exists()

    def test_delete_releases_blobs(self, store: EntryStore, photo: Path):
        entry = store.create("Beach", attachments={"p1": photo})
        store.delete(entry.id)
        assert not (store.root / "attachments" / entry.id).exists()
        assert photo.exists()

    def test_replaced_content_under_same_id(
        self, store: EntryStore, photo: Path, tmp_path: Path, clock: FakeClock
    ):
        entry = store.create("Beach", attachments={"p1": photo})
        old_blob = entry.attachments["p1"]
        seen = []
        store.events.subscribe(EventKind.ENTRIES_CHANGED, seen.append)

        replacement = tmp_path / "incoming" / "beach.jpg"
        replacement.parent.mkdir()
        replacement.write_bytes(b"\xff\xd8 retaken photo")
        clock.advance(minutes=5)
        updated = store.update(store.get(entry.id).copy(attachments={"p1": replacement}))

        assert updated.modified_at == clock.now
        assert updated.attachments["p1"] != old_blob
        assert updated.attachments["p1"].read_bytes() == b"\xff\xd8 retaken photo"
        assert not old_blob.exists()
        assert len(seen) == 1
        assert list((store.root / ".versions").glob(f"{entry.id}-*.md"))

    def test_same_bytes_from_elsewhere_is_noop(
        self, store: EntryStore, photo: Path, tmp_path: Path, clock: FakeClock
    ):
        entry = store.create("Beach", attachments={"p1": photo})
        duplicate = tmp_path / "copy" / "beach.jpg"
        duplicate.parent.mkdir()
        duplicate.write_bytes(photo.read_bytes())
        clock.advance(minutes=5)
        updated = store.update(store.get(entry.id).copy(attachments={"p1": duplicate}))
        assert updated.modified_at == entry.modified_at
        assert updated.attachments == entry.attachments
        assert entry.attachments["p1"].exists()

    def test_rejected_remote_blobs_released(self, store: EntryStore, photo: Path):
        entry = store.create("Beach", attachments={"p1": photo})
        downloaded = store.import_blob(entry.id, "p2", b"older remote photo", ".jpg")
        stale = entry.copy(
            modified_at=entry.modified_at.replace(year=2020),
            attachments={"p1": entry.attachments["p1"], "p2": downloaded},
        )
        assert store.apply_remote(stale) is False
        assert not downloaded.exists()
        assert entry.attachments["p1"].exists()

    def test_missing_blob_omitted_on_read(self, store: EntryStore, photo: Path):
        entry = store.create("Beach", attachments={"p1": photo})
        entry.attachments["p1"].unlink()
        assert store.get(entry.id).attachments == {}


class TestTags:
    def test_all_tags_sorted_union(self, store: EntryStore):
        store.create("A", tags=["beta", "alpha"])
        store.create("B", tags=["alpha", "Gamma"])
        assert store.all_tags() == ["Gamma", "alpha", "beta"]

    def test_empty(self, store: EntryStore):
        assert store.all_tags() == []


class TestEvents:
    def test_failing_subscriber_does_not_fail_write(self, store: EntryStore):
        def boom(event):
            raise RuntimeError("subscriber down")

        store.events.subscribe(EventKind.ENTRIES_CHANGED, boom)
        entry = store.create("Safe")
        assert store.get(entry.id).title == "Safe"

    def test_unsubscribe(self, store: EntryStore):
        seen = []
        unsubscribe = store.events.subscribe(EventKind.ENTRIES_CHANGED, seen.append)
        store.create("One")
        unsubscribe()
        store.create("Two")
        assert len(seen) == 1
