"""Journal entry value object and its serialized forms."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any


class DecayTimeUnit(str, Enum):
    """Time unit the decay rate is expressed in."""

    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"

    @property
    def minute_multiplier(self) -> int:
        return _MINUTE_MULTIPLIERS[self]

    @classmethod
    def parse(cls, value: str | DecayTimeUnit) -> DecayTimeUnit:
        """Accept enum members and case-insensitive names ("DAYS", "days")."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(
                f"Unknown decay unit {value!r}; expected one of {[u.value for u in cls]}"
            ) from None


_MINUTE_MULTIPLIERS = {
    DecayTimeUnit.MINUTES: 1,
    DecayTimeUnit.HOURS: 60,
    DecayTimeUnit.DAYS: 24 * 60,
}


@dataclass(frozen=True)
class MemoryQuestion:
    """A recall question the user wrote for their own entry."""

    question: str
    answer: str


@dataclass
class Entry:
    """One memory record plus its decay/restoration state.

    ``decay_level`` is a cache: readers always get it recomputed from
    ``restored_at or created_at`` by the store.
    """

    id: str
    title: str
    content: str
    created_at: datetime
    modified_at: datetime
    restored_at: datetime | None = None
    decay_level: int = 0
    tags: frozenset[str] = field(default_factory=frozenset)
    attachments: dict[str, Path] = field(default_factory=dict)
    questions: tuple[MemoryQuestion, ...] = ()

    @property
    def decay_since(self) -> datetime:
        """Timestamp the decay clock runs from."""
        return self.restored_at or self.created_at

    @property
    def has_challenge(self) -> bool:
        return bool(self.questions)

    def copy(self, **changes: Any) -> Entry:
        """Return a detached copy; containers are never shared with the store."""
        entry = replace(self, **changes)
        entry.tags = frozenset(entry.tags)
        entry.attachments = dict(entry.attachments)
        entry.questions = tuple(entry.questions)
        return entry

    def same_content(self, other: Entry) -> bool:
        """True when every user-editable field matches."""
        return (
            self.title == other.title
            and self.content == other.content
            and self.tags == other.tags
            and self.attachments == other.attachments
            and self.questions == other.questions
        )

    # ── Frontmatter form (local store) ───────────────────────

    def to_metadata(self) -> dict[str, Any]:
        """Metadata written to the entry file's YAML frontmatter."""
        meta: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "created": format_timestamp(self.created_at),
            "modified": format_timestamp(self.modified_at),
            "decay_level": self.decay_level,
            "tags": sorted(self.tags),
            "attachments": {k: str(v) for k, v in sorted(self.attachments.items())},
            "questions": [{"question": q.question, "answer": q.answer} for q in self.questions],
        }
        if self.restored_at is not None:
            meta["restored"] = format_timestamp(self.restored_at)
        return meta

    @classmethod
    def from_metadata(cls, meta: dict[str, Any], content: str) -> Entry:
        created = parse_timestamp(meta["created"])
        return cls(
            id=str(meta["id"]),
            title=str(meta.get("title", "")),
            content=content,
            created_at=created,
            modified_at=parse_timestamp(meta.get("modified")) or created,
            restored_at=parse_timestamp(meta.get("restored")),
            decay_level=int(meta.get("decay_level", 0)),
            tags=frozenset(str(t) for t in meta.get("tags") or []),
            attachments={str(k): Path(v) for k, v in (meta.get("attachments") or {}).items()},
            questions=tuple(
                MemoryQuestion(str(q["question"]), str(q["answer"]))
                for q in meta.get("questions") or []
            ),
        )


def new_entry_id() -> str:
    return uuid.uuid4().hex


def format_timestamp(value: datetime) -> str:
    return value.isoformat()


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO timestamp into naive local time.

    YAML may already have produced a datetime. Aware values (``Z`` or an
    offset) are converted to the local zone and stripped of their tzinfo.
    """
    if value is None or value == "":
        return None
    if not isinstance(value, datetime):
        text = str(value)
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        value = datetime.fromisoformat(text)
    if value.tzinfo is not None:
        value = value.astimezone().replace(tzinfo=None)
    return value
