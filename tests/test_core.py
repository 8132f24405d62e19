"""Tests for the journal orchestrator."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from conftest import FakeClock
from remember.config import RememberConfig
from remember.core import Journal
from remember.errors import ChallengeRequired, NotFound, ValidationFailed
from remember.events import EventKind
from remember.journal.entry import DecayTimeUnit, MemoryQuestion
from remember.settings import Settings
from remember.sync.remote import DirectoryRemote

QUESTIONS = [MemoryQuestion("Where?", "Lisbon"), MemoryQuestion("Who?", "Ana")]


@pytest.fixture
def sink() -> MagicMock:
    return MagicMock()


@pytest.fixture
def journal(config: RememberConfig, clock: FakeClock, sink: MagicMock) -> Journal:
    return Journal(config, clock=clock, request_notification=sink)


def _collect(journal: Journal, kind: EventKind) -> list:
    seen = []
    journal.events.subscribe(kind, seen.append)
    return seen


class TestEntries:
    def test_create_and_list(self, journal: Journal):
        entry = journal.create("First", "hello", ["a", "b"])
        assert [e.id for e in journal.entries()] == [entry.id]
        assert journal.tags() == ["a", "b"]

    def test_validation(self, journal: Journal):
        with pytest.raises(ValidationFailed):
            journal.create("  ")

    def test_delete_then_get(self, journal: Journal):
        entry = journal.create("Bye")
        journal.delete(entry.id)
        with pytest.raises(NotFound):
            journal.get(entry.id)

    def test_survives_restart(self, config: RememberConfig, clock: FakeClock):
        entry = Journal(config, clock=clock).create("Kept", "on disk")
        assert Journal(config, clock=clock).get(entry.id).content == "on disk"


class TestRestore:
    def test_plain_restore(self, journal: Journal, clock: FakeClock):
        entry = journal.create("Old")
        clock.advance(days=10)
        assert journal.get(entry.id).decay_level == 50
        assert journal.restore(entry.id).decay_level == 0

    def test_questions_require_challenge(self, journal: Journal, clock: FakeClock):
        entry = journal.create("Quiz", questions=QUESTIONS)
        clock.advance(days=10)
        with pytest.raises(ChallengeRequired):
            journal.restore(entry.id)
        assert journal.get(entry.id).decay_level == 50

    def test_challenge_pass_restores(self, journal: Journal, clock: FakeClock):
        entry = journal.create("Quiz", questions=QUESTIONS)
        clock.advance(days=10)
        result = journal.complete_challenge(entry.id, ["lisbon", "wrong"])
        assert result.passed
        assert result.score == 0.5
        assert journal.get(entry.id).decay_level == 0
        assert journal.achievement_snapshot().challenges_completed == 1

    def test_challenge_fail_changes_nothing(self, journal: Journal, clock: FakeClock):
        entry = journal.create("Quiz", questions=QUESTIONS)
        clock.advance(days=10)
        result = journal.complete_challenge(entry.id, ["no", "no"])
        assert not result.passed
        assert journal.get(entry.id).decay_level == 50
        assert journal.achievement_snapshot().total_restored == 0

    def test_start_challenge(self, journal: Journal):
        entry = journal.create("Quiz", questions=QUESTIONS)
        challenge = journal.start_challenge(entry.id)
        assert challenge.current_question == QUESTIONS[0]

    def test_restore_unlocks_achievement(self, journal: Journal):
        unlocked = _collect(journal, EventKind.ACHIEVEMENT_UNLOCKED)
        entry = journal.create("First")
        journal.restore(entry.id)
        assert [e.payload["id"] for e in unlocked] == ["first_memory"]
        assert journal.achievement_snapshot().total_restored == 1


class TestDecayUnit:
    def test_change_is_retroactive_and_persisted(
        self, journal: Journal, config: RememberConfig, clock: FakeClock
    ):
        entry = journal.create("Unit")
        clock.advance(hours=2)
        assert journal.get(entry.id).decay_level == 0
        journal.set_decay_unit("hours")
        assert journal.get(entry.id).decay_level == 10
        reloaded = Settings.load(config.data_dir / "settings.json")
        assert reloaded.decay_time_unit is DecayTimeUnit.HOURS

    def test_invalid_unit(self, journal: Journal):
        with pytest.raises(ValueError):
            journal.set_decay_unit("weeks")


class TestRisk:
    def test_at_risk_transitions(self, journal: Journal, clock: FakeClock, sink: MagicMock):
        changes = _collect(journal, EventKind.AT_RISK_CHANGED)
        entry = journal.create("Fading")
        clock.advance(days=15)

        journal.refresh()
        assert [e.id for e in journal.at_risk()] == [entry.id]
        assert changes[-1].payload["entry_ids"] == [entry.id]
        assert sink.call_count == 1

        journal.refresh()
        assert len(changes) == 1
        assert sink.call_count == 1

        journal.restore(entry.id)
        assert changes[-1].payload["entry_ids"] == []
        assert journal.at_risk() == []

    def test_reminder_throttled(self, journal: Journal, clock: FakeClock, sink: MagicMock):
        journal.create("One")
        journal.create("Two")
        clock.advance(days=16)
        journal.refresh()
        clock.advance(minutes=10)
        journal.refresh()
        assert sink.call_count == 1
        assert sink.call_args.args[0].count == 2

        clock.advance(hours=2)
        journal.refresh()
        assert sink.call_count == 2


class TestDegraded:
    def test_runs_in_memory(self, tmp_path: Path, clock: FakeClock):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        journal = Journal(RememberConfig(data_dir=blocker / "journal"), clock=clock)
        assert journal.store.degraded
        assert journal.settings.path is None
        entry = journal.create("Memory only")
        journal.set_decay_unit("minutes")
        assert journal.restore(entry.id).decay_level == 0


class TestSync:
    @pytest.mark.asyncio
    async def test_without_remote_skipped(self, journal: Journal):
        report = await journal.sync()
        assert report.skipped

    @pytest.mark.asyncio
    async def test_with_directory_remote(self, config: RememberConfig, clock: FakeClock, tmp_path: Path):
        remote = DirectoryRemote(tmp_path / "remote")
        journal = Journal(config, clock=clock, remote=remote)
        entry = journal.create("Synced")
        report = await journal.sync()
        assert report.uploaded == 1
        assert (tmp_path / "remote" / "user-1" / "entries" / f"{entry.id}.json").exists()
        await journal.close()

    @pytest.mark.asyncio
    async def test_signed_out_skipped(self, config: RememberConfig, clock: FakeClock, tmp_path: Path):
        journal = Journal(
            config,
            clock=clock,
            remote=DirectoryRemote(tmp_path / "remote"),
            current_user_id=lambda: None,
        )
        journal.create("Local")
        assert (await journal.sync()).skipped
