"""Shared fixtures: a controllable clock and a journal config rooted in tmp_path."""

from __future__ import annotations

from datetime import datetime, timedelta
from pathlib import Path

import pytest

from remember.config import RememberConfig, SyncConfig

T0 = datetime(2026, 3, 1, 9, 0, 0)


class FakeClock:
    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config(tmp_path: Path) -> RememberConfig:
    return RememberConfig(
        data_dir=tmp_path / "journal",
        pid_file=tmp_path / "remember.pid",
        sync=SyncConfig(user_id="user-1", timeout=2.0),
    )
