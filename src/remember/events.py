"""Change events emitted by the journal.

Subscribers are side effects (notifications, achievements, UI refresh). A
failing subscriber is logged and never affects the mutation that emitted the
event.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    ENTRIES_CHANGED = "entries_changed"
    AT_RISK_CHANGED = "at_risk_changed"
    ENTRY_RESTORED = "entry_restored"
    ACHIEVEMENT_UNLOCKED = "achievement_unlocked"


@dataclass
class JournalEvent:
    """A single change notification."""

    kind: EventKind
    at: datetime
    entry_id: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)


EventHandler = Callable[[JournalEvent], None]


class EventBus:
    """Synchronous fan-out of journal events to subscribers."""

    def __init__(self) -> None:
        self._handlers: dict[EventKind, list[EventHandler]] = {}
        self._lock = threading.Lock()

    def subscribe(self, kind: EventKind, handler: EventHandler) -> Callable[[], None]:
        """Register ``handler`` for ``kind``. Returns an unsubscribe callable."""
        with self._lock:
            self._handlers.setdefault(kind, []).append(handler)

        def unsubscribe() -> None:
            with self._lock:
                handlers = self._handlers.get(kind, [])
                if handler in handlers:
                    handlers.remove(handler)

        return unsubscribe

    def emit(self, event: JournalEvent) -> None:
        with self._lock:
            handlers = list(self._handlers.get(event.kind, []))
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.warning("Event handler for %s failed: %s", event.kind.value, e)
