"""Persisted user settings: decay unit and the notification throttle stamp."""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from pathlib import Path

from remember.errors import StorageUnavailable
from remember.journal.entry import DecayTimeUnit, format_timestamp, parse_timestamp
from remember.storage import read_json, write_json

logger = logging.getLogger(__name__)

SETTINGS_FILENAME = "settings.json"


class Settings:
    """Single settings record, loaded once and saved on every change.

    ``path=None`` keeps the record in memory only.
    """

    def __init__(
        self,
        path: Path | None = None,
        decay_time_unit: DecayTimeUnit = DecayTimeUnit.DAYS,
        last_notified_at: datetime | None = None,
    ) -> None:
        self.path = path
        self._decay_time_unit = decay_time_unit
        self._last_notified_at = last_notified_at
        self._lock = threading.Lock()

    @classmethod
    def load(cls, path: Path | None, default_unit: DecayTimeUnit = DecayTimeUnit.DAYS) -> Settings:
        if path is None:
            return cls(None, default_unit)
        data = read_json(path, default={}) or {}
        try:
            unit = DecayTimeUnit.parse(data.get("decay_time_unit", default_unit))
        except ValueError:
            logger.warning("Ignoring invalid decay unit in %s", path)
            unit = default_unit
        return cls(path, unit, parse_timestamp(data.get("last_notified_at")))

    @property
    def decay_time_unit(self) -> DecayTimeUnit:
        return self._decay_time_unit

    @property
    def last_notified_at(self) -> datetime | None:
        return self._last_notified_at

    def set_decay_time_unit(self, unit: DecayTimeUnit | str) -> None:
        """Change the unit. Applies retroactively on the next read."""
        with self._lock:
            self._decay_time_unit = DecayTimeUnit.parse(unit)
            self._save()
        logger.info("Decay unit set to %s", self._decay_time_unit.value)

    def mark_notified(self, at: datetime) -> None:
        with self._lock:
            self._last_notified_at = at
            self._save()

    def to_dict(self) -> dict:
        return {
            "decay_time_unit": self._decay_time_unit.value,
            "last_notified_at": (
                format_timestamp(self._last_notified_at) if self._last_notified_at else None
            ),
        }

    def _save(self) -> None:
        if self.path is None:
            return
        try:
            write_json(self.path, self.to_dict())
        except StorageUnavailable as e:
            logger.warning("Settings kept in memory only: %s", e)
            self.path = None
