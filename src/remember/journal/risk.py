"""At-risk detection and throttled reminder notifications."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from remember.journal.decay import MAX_DECAY
from remember.journal.entry import Entry
from remember.settings import Settings

logger = logging.getLogger(__name__)

AT_RISK_THRESHOLD = 75
NOTIFY_MIN_DECAY = 50
NOTIFY_INTERVAL = timedelta(hours=1)


@dataclass
class NotificationRequest:
    """One aggregated reminder covering every fading entry."""

    title: str
    body: str
    count: int
    entry_ids: list[str] = field(default_factory=list)


NotificationRequester = Callable[[NotificationRequest], None]


def at_risk(entries: Sequence[Entry], threshold: int = AT_RISK_THRESHOLD) -> list[Entry]:
    return [e for e in entries if e.decay_level >= threshold]


def build_notification(entries: Sequence[Entry]) -> NotificationRequest | None:
    if not entries:
        return None
    ids = [e.id for e in entries]
    if len(entries) == 1:
        return NotificationRequest(
            title="A memory is fading",
            body=f'"{entries[0].title}" is fading. Restore it before it is gone.',
            count=1,
            entry_ids=ids,
        )
    return NotificationRequest(
        title="Memories are fading",
        body=f"{len(entries)} memories are fading. Restore them before they are gone.",
        count=len(entries),
        entry_ids=ids,
    )


class RiskMonitor:
    """Derives the at-risk set and decides when to ask for a reminder.

    Throttling is global: one stamp in settings, never per entry.
    """

    def __init__(
        self,
        settings: Settings,
        request_notification: NotificationRequester | None = None,
        *,
        threshold: int = AT_RISK_THRESHOLD,
        notify_min: int = NOTIFY_MIN_DECAY,
        interval: timedelta = NOTIFY_INTERVAL,
    ) -> None:
        self.settings = settings
        self.request_notification = request_notification
        self.threshold = threshold
        self.notify_min = notify_min
        self.interval = interval
        self._lock = threading.Lock()

    def at_risk(self, entries: Sequence[Entry]) -> list[Entry]:
        return at_risk(entries, self.threshold)

    def candidates(self, entries: Sequence[Entry]) -> list[Entry]:
        """At-risk entries worth a reminder; fully decayed ones need a restore instead."""
        return [e for e in self.at_risk(entries) if self.notify_min <= e.decay_level < MAX_DECAY]

    def throttled(self, now: datetime) -> bool:
        last = self.settings.last_notified_at
        return last is not None and now - last < self.interval

    def check(self, entries: Sequence[Entry], now: datetime) -> NotificationRequest | None:
        """Request one aggregated notification if due. Returns what was requested.

        Concurrent callers are serialized so one interval yields one request.
        """
        request = build_notification(self.candidates(entries))
        if request is None:
            return None
        with self._lock:
            if self.throttled(now):
                return None
            if self.request_notification is not None:
                try:
                    self.request_notification(request)
                except Exception as e:
                    logger.warning("Notification request failed, will retry: %s", e)
                    return None
            self.settings.mark_notified(now)
        logger.info("Requested reminder for %d fading entries", request.count)
        return request
