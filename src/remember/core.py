"""Journal orchestrator: the surface the UI layer talks to.

Responsibilities:
1. Own the store, settings, risk monitor, achievement tracker and reconciler
2. Gate restoration of question-bearing entries behind a recall challenge
3. Route store events to side effects (achievements, reminders)
4. Refresh decay/at-risk state for periodic UI polls
5. Run sync passes when a user is signed in
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from datetime import datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING

from remember.config import RememberConfig
from remember.errors import ChallengeRequired
from remember.events import EventBus, EventKind, JournalEvent
from remember.journal.achievements import (
    ACHIEVEMENTS_FILENAME,
    AchievementDefinition,
    AchievementState,
    AchievementTracker,
)
from remember.journal.challenge import ChallengeResult, RecallChallenge, passes, score_answers
from remember.journal.entry import DecayTimeUnit, Entry, MemoryQuestion
from remember.journal.risk import NotificationRequest, NotificationRequester, RiskMonitor
from remember.journal.store import EntryStore
from remember.settings import SETTINGS_FILENAME, Settings
from remember.sync.reconciler import SyncReconciler, SyncReport

if TYPE_CHECKING:
    import asyncio

    from remember.sync.remote import Remote

logger = logging.getLogger(__name__)


class Journal:
    """Core orchestrator. Wires the entry store to its side effects."""

    def __init__(
        self,
        config: RememberConfig,
        *,
        clock: Callable[[], datetime] = datetime.now,
        current_user_id: Callable[[], str | None] | None = None,
        request_notification: NotificationRequester | None = None,
        remote: Remote | None = None,
    ) -> None:
        self.config = config
        self._clock = clock
        self._current_user_id = current_user_id or (lambda: config.sync.user_id)
        self.events = EventBus()

        data_dir = config.data_dir
        self.settings = Settings.load(
            data_dir / SETTINGS_FILENAME, DecayTimeUnit.parse(config.decay.unit)
        )
        self.store = EntryStore(
            data_dir,
            self.settings,
            rate=config.decay.rate,
            clock=clock,
            events=self.events,
        )
        if self.store.degraded:
            self.settings.path = None
        self.achievements = AchievementTracker(
            None if self.store.degraded else data_dir / ACHIEVEMENTS_FILENAME,
            clock=clock,
            on_unlock=self._on_unlock,
        )
        self.risk = RiskMonitor(
            self.settings,
            request_notification,
            threshold=config.risk.threshold,
            notify_min=config.risk.notify_min,
            interval=timedelta(seconds=config.risk.notify_interval),
        )
        self.remote = remote
        self.reconciler = (
            SyncReconciler(self.store, remote, self._current_user_id, timeout=config.sync.timeout)
            if remote is not None
            else None
        )
        self._at_risk_ids: frozenset[str] = frozenset()

        self.events.subscribe(EventKind.ENTRY_RESTORED, self._on_restored)
        self.events.subscribe(EventKind.ENTRIES_CHANGED, self._on_entries_changed)

    # ── Entry CRUD ───────────────────────────────────────────

    def create(
        self,
        title: str,
        content: str = "",
        tags: Iterable[str] = (),
        attachments: Mapping[str, Path] | None = None,
        questions: Iterable[MemoryQuestion] = (),
    ) -> Entry:
        return self.store.create(title, content, tags, attachments, questions)

    def update(self, entry: Entry) -> Entry:
        return self.store.update(entry)

    def delete(self, entry_id: str) -> None:
        self.store.delete(entry_id)

    def get(self, entry_id: str) -> Entry:
        return self.store.get(entry_id)

    def entries(self) -> list[Entry]:
        return self.store.list()

    def tags(self) -> list[str]:
        return self.store.all_tags()

    # ── Restoration ──────────────────────────────────────────

    def restore(self, entry_id: str) -> Entry:
        """Restore an entry without questions. Raises ChallengeRequired otherwise."""
        entry = self.store.get(entry_id)
        if entry.has_challenge:
            raise ChallengeRequired(f"Entry {entry_id} must be restored through its challenge")
        return self.store.restore(entry_id)

    def start_challenge(self, entry_id: str) -> RecallChallenge:
        return RecallChallenge(self.store.get(entry_id).questions)

    def complete_challenge(self, entry_id: str, answers: Sequence[str]) -> ChallengeResult:
        """Score answers; a pass restores the entry, a failure changes nothing."""
        entry = self.store.get(entry_id)
        score = score_answers(entry.questions, answers)
        if not passes(score):
            logger.info("Challenge for %s failed (%.0f%%)", entry_id, score * 100)
            return ChallengeResult(score=score, passed=False, entry=entry)
        restored = self.store.restore(entry_id, via_challenge=True)
        return ChallengeResult(score=score, passed=True, entry=restored)

    # ── Decay, risk & reminders ──────────────────────────────

    def set_decay_unit(self, unit: DecayTimeUnit | str) -> None:
        self.settings.set_decay_time_unit(unit)
        self.refresh()

    def at_risk(self) -> list[Entry]:
        return self.risk.at_risk(self.store.list())

    def refresh(self) -> list[Entry]:
        """Recompute decay, emit at-risk changes and request a reminder if due."""
        entries = self.store.list()
        at_risk_ids = frozenset(e.id for e in self.risk.at_risk(entries))
        if at_risk_ids != self._at_risk_ids:
            self._at_risk_ids = at_risk_ids
            self.events.emit(
                JournalEvent(
                    kind=EventKind.AT_RISK_CHANGED,
                    at=self._clock(),
                    payload={"entry_ids": sorted(at_risk_ids)},
                )
            )
        self.check_notifications(entries)
        return entries

    def check_notifications(self, entries: Sequence[Entry] | None = None) -> NotificationRequest | None:
        if entries is None:
            entries = self.store.list()
        return self.risk.check(entries, self._clock())

    # ── Achievements ─────────────────────────────────────────

    def achievement_snapshot(self) -> AchievementState:
        return self.achievements.snapshot()

    def _on_restored(self, event: JournalEvent) -> None:
        self.achievements.record_restoration(
            event.at, via_challenge=bool(event.payload.get("via_challenge"))
        )

    def _on_unlock(self, achievement: AchievementDefinition, at: datetime) -> None:
        self.events.emit(
            JournalEvent(
                kind=EventKind.ACHIEVEMENT_UNLOCKED,
                at=at,
                payload={"id": achievement.id, "title": achievement.title},
            )
        )

    def _on_entries_changed(self, event: JournalEvent) -> None:
        self.refresh()

    # ── Sync ─────────────────────────────────────────────────

    async def sync(self, cancel: asyncio.Event | None = None) -> SyncReport:
        if self.reconciler is None:
            return SyncReport(skipped=True)
        return await self.reconciler.sync(cancel)

    async def close(self) -> None:
        close = getattr(self.remote, "close", None)
        if close and callable(close):
            await close()
