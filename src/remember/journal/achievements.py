"""Restoration streaks and the achievement catalog."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from enum import Enum
from pathlib import Path

from remember.errors import StorageUnavailable
from remember.journal.entry import format_timestamp, parse_timestamp
from remember.storage import read_json, write_json

logger = logging.getLogger(__name__)

ACHIEVEMENTS_FILENAME = "achievements.json"


class AchievementKind(str, Enum):
    RESTORED = "restored"
    STREAK = "streak"


@dataclass(frozen=True)
class AchievementDefinition:
    id: str
    title: str
    description: str
    threshold: int
    kind: AchievementKind


CATALOG: tuple[AchievementDefinition, ...] = (
    AchievementDefinition(
        "first_memory", "First Memory Restored", "Restore your first memory", 1,
        AchievementKind.RESTORED,
    ),
    AchievementDefinition(
        "10_memories", "Memory Keeper", "Restore 10 memories", 10, AchievementKind.RESTORED
    ),
    AchievementDefinition(
        "memory_master", "Memory Master", "Restore 50 memories", 50, AchievementKind.RESTORED
    ),
    AchievementDefinition(
        "3_day_streak", "Consistent", "Restore memories 3 days in a row", 3,
        AchievementKind.STREAK,
    ),
    AchievementDefinition(
        "7_day_streak", "Dedicated", "Restore memories 7 days in a row", 7,
        AchievementKind.STREAK,
    ),
    AchievementDefinition(
        "30_day_streak", "Memory Guardian", "Restore memories 30 days in a row", 30,
        AchievementKind.STREAK,
    ),
)


@dataclass
class AchievementState:
    total_restored: int = 0
    challenges_completed: int = 0
    current_streak: int = 0
    longest_streak: int = 0
    last_streak_day: date | None = None
    unlocked: dict[str, datetime] = field(default_factory=dict)

    def is_unlocked(self, achievement_id: str) -> bool:
        return achievement_id in self.unlocked

    def metric(self, kind: AchievementKind) -> int:
        if kind is AchievementKind.STREAK:
            return self.current_streak
        return self.total_restored

    def to_dict(self) -> dict:
        return {
            "total_restored": self.total_restored,
            "challenges_completed": self.challenges_completed,
            "current_streak": self.current_streak,
            "longest_streak": self.longest_streak,
            "last_streak_day": self.last_streak_day.isoformat() if self.last_streak_day else None,
            "unlocked": {k: format_timestamp(v) for k, v in self.unlocked.items()},
        }

    @classmethod
    def from_dict(cls, data: dict) -> AchievementState:
        last_day = data.get("last_streak_day")
        return cls(
            total_restored=int(data.get("total_restored", 0)),
            challenges_completed=int(data.get("challenges_completed", 0)),
            current_streak=int(data.get("current_streak", 0)),
            longest_streak=int(data.get("longest_streak", 0)),
            last_streak_day=date.fromisoformat(last_day) if last_day else None,
            unlocked={
                k: parse_timestamp(v)
                for k, v in (data.get("unlocked") or {}).items()
                if k in _CATALOG_IDS
            },
        )


_CATALOG_IDS = {a.id for a in CATALOG}


class AchievementTracker:
    """Updates streak counters on successful restorations and unlocks achievements."""

    def __init__(
        self,
        path: Path | None = None,
        *,
        clock: Callable[[], datetime] = datetime.now,
        on_unlock: Callable[[AchievementDefinition, datetime], None] | None = None,
    ) -> None:
        self.path = path
        self._clock = clock
        self._on_unlock = on_unlock
        self._lock = threading.Lock()
        data = read_json(path, default={}) if path else {}
        try:
            self._state = AchievementState.from_dict(data or {})
        except (TypeError, ValueError) as e:
            logger.warning("Resetting unreadable achievements file %s: %s", path, e)
            self._state = AchievementState()

    def snapshot(self) -> AchievementState:
        with self._lock:
            return replace(self._state, unlocked=dict(self._state.unlocked))

    def record_restoration(
        self, restored_at: datetime, *, via_challenge: bool = False
    ) -> list[AchievementDefinition]:
        """Apply one successful restoration. Returns newly unlocked achievements."""
        day = restored_at.date()
        with self._lock:
            state = self._state
            last = state.last_streak_day
            if last is not None and last in (day, day - timedelta(days=1)):
                state.current_streak += 1
            else:
                state.current_streak = 1
            state.longest_streak = max(state.longest_streak, state.current_streak)
            state.total_restored += 1
            if via_challenge:
                state.challenges_completed += 1
            state.last_streak_day = day
            unlocked = self._unlock_reached(state)
            self._save()
        for achievement in unlocked:
            logger.info("Achievement unlocked: %s", achievement.title)
            if self._on_unlock is not None:
                self._on_unlock(achievement, state.unlocked[achievement.id])
        return unlocked

    def _unlock_reached(self, state: AchievementState) -> list[AchievementDefinition]:
        now = self._clock()
        unlocked = []
        for achievement in CATALOG:
            if state.is_unlocked(achievement.id):
                continue
            if state.metric(achievement.kind) >= achievement.threshold:
                state.unlocked[achievement.id] = now
                unlocked.append(achievement)
        return unlocked

    def _save(self) -> None:
        if self.path is None:
            return
        try:
            write_json(self.path, self._state.to_dict())
        except StorageUnavailable as e:
            logger.warning("Achievements kept in memory only: %s", e)
            self.path = None
