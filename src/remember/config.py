"""Configuration loading from environment variables and remember.toml."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

_DEFAULT_DATA_DIR = Path.home() / ".remember" / "journal"
_CONFIG_FILENAME = "remember.toml"


@dataclass
class DecayConfig:
    """Decay policy defaults. The unit is only the initial value for settings.json."""

    rate: int = 5
    unit: str = "days"


@dataclass
class RiskConfig:
    """At-risk detection and notification throttling."""

    threshold: int = 75
    notify_min: int = 50
    notify_interval: int = 3600


@dataclass
class SyncConfig:
    """Remote sync configuration. An empty backend disables sync."""

    backend: str = ""
    base_url: str = ""
    token: str = ""
    remote_dir: Path | None = None
    user_id: str | None = None
    interval: int = 900
    timeout: float = 30.0


@dataclass
class SchedulerConfig:
    """Scheduler configuration."""

    refresh_interval: float = 15


@dataclass
class RememberConfig:
    """Top-level configuration."""

    decay: DecayConfig = field(default_factory=DecayConfig)
    risk: RiskConfig = field(default_factory=RiskConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    data_dir: Path = _DEFAULT_DATA_DIR
    pid_file: Path = Path.home() / ".remember" / "remember.pid"
    log_level: str = "INFO"


def load_config(config_path: Path | None = None) -> RememberConfig:
    """Load configuration from environment variables and optional remember.toml.

    Priority: environment variables > remember.toml > defaults.
    """
    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = tomllib.loads(config_path.read_text())
    else:
        # Search current dir and ~/.remember/
        for candidate in [
            Path.cwd() / _CONFIG_FILENAME,
            Path.home() / ".remember" / _CONFIG_FILENAME,
        ]:
            if candidate.exists():
                file_data = tomllib.loads(candidate.read_text())
                break

    decay_data = file_data.get("decay", {})
    risk_data = file_data.get("risk", {})
    sync_data = file_data.get("sync", {})
    scheduler_data = file_data.get("scheduler", {})

    remote_dir = os.getenv("REMEMBER_SYNC_DIR", sync_data.get("remote_dir"))

    config = RememberConfig(
        decay=DecayConfig(
            rate=int(decay_data.get("rate", 5)),
            unit=os.getenv("REMEMBER_DECAY_UNIT", decay_data.get("unit", "days")),
        ),
        risk=RiskConfig(
            threshold=int(risk_data.get("threshold", 75)),
            notify_min=int(risk_data.get("notify_min", 50)),
            notify_interval=int(risk_data.get("notify_interval", 3600)),
        ),
        sync=SyncConfig(
            backend=os.getenv("REMEMBER_SYNC_BACKEND", sync_data.get("backend", "")),
            base_url=os.getenv("REMEMBER_SYNC_URL", sync_data.get("base_url", "")),
            token=os.getenv("REMEMBER_SYNC_TOKEN", sync_data.get("token", "")),
            remote_dir=Path(remote_dir).expanduser() if remote_dir else None,
            user_id=os.getenv("REMEMBER_USER_ID", sync_data.get("user_id")),
            interval=int(os.getenv("REMEMBER_SYNC_INTERVAL", sync_data.get("interval", 900))),
            timeout=float(os.getenv("REMEMBER_SYNC_TIMEOUT", sync_data.get("timeout", 30.0))),
        ),
        scheduler=SchedulerConfig(
            refresh_interval=float(scheduler_data.get("refresh_interval", 15)),
        ),
        data_dir=Path(
            os.getenv("REMEMBER_DATA_DIR", file_data.get("data_dir", str(_DEFAULT_DATA_DIR)))
        ).expanduser(),
        log_level=os.getenv("REMEMBER_LOG_LEVEL", file_data.get("log_level", "INFO")),
    )
    return config
