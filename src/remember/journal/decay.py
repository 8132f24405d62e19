"""Decay policy: how faded a memory is, as a pure function of time."""

from __future__ import annotations

import math
from datetime import datetime
from enum import Enum

from remember.journal.entry import DecayTimeUnit

DEFAULT_RATE = 5
MAX_DECAY = 100


class DecayState(str, Enum):
    FRESH = "fresh"
    AT_RISK = "at_risk"
    DECAYED = "decayed"


def decay(
    since: datetime,
    unit: DecayTimeUnit,
    now: datetime,
    rate: int = DEFAULT_RATE,
) -> int:
    """Decay level in [0, 100] for a clock started at ``since``.

    Elapsed whole minutes are converted to ``unit`` and multiplied by ``rate``
    points per unit. A ``since`` in the future (clock skew) yields 0.
    """
    elapsed_minutes = math.floor((now - since).total_seconds() / 60)
    if elapsed_minutes <= 0:
        return 0
    units = elapsed_minutes / unit.minute_multiplier
    return int(math.floor(min(MAX_DECAY, units * rate)))


def classify(level: int, risk_threshold: int = 75) -> DecayState:
    if level >= MAX_DECAY:
        return DecayState.DECAYED
    if level >= risk_threshold:
        return DecayState.AT_RISK
    return DecayState.FRESH
