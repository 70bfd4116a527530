from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from acc_session_recorder.errors import ConfigError

PROVIDER_MODES = ("acc", "mock", "replay")


@dataclass(slots=True)
class RecorderConfig:
    provider_mode: str = "acc"  # acc | mock | replay
    poll_hz: float = 10.0
    read_timeout_s: float = 0.5
    max_backoff_s: float = 5.0
    replay_file: str = ""
    replay_speed: float = 0.0
    tick_limit: int = 0
    db_path: Path = Path("data") / "sessions.sqlite"
    queue_capacity: int = 512
    persist_live_updates: bool = True
    live_persist_every_s: float = 5.0
    persist_max_attempts: int = 5
    persist_parquet: bool = True
    record_snapshots: bool = False
    output_dir: Path = Path("data") / "session_output"
    mock_lap_time_ms: int = 95_000
    mock_tick_ms: int = 100

    @property
    def poll_interval_s(self) -> float:
        return 1.0 / self.poll_hz

    def validate(self) -> RecorderConfig:
        if self.provider_mode not in PROVIDER_MODES:
            raise ConfigError(f"Invalid provider mode: {self.provider_mode!r} (expected one of {PROVIDER_MODES})")
        if self.poll_hz <= 0:
            raise ConfigError(f"poll_hz must be > 0, got {self.poll_hz}")
        if self.read_timeout_s < 0:
            raise ConfigError(f"read_timeout_s must be >= 0, got {self.read_timeout_s}")
        if self.max_backoff_s < self.poll_interval_s:
            raise ConfigError(
                f"max_backoff_s ({self.max_backoff_s}) must not be shorter than the poll interval "
                f"({self.poll_interval_s:.3f}s)"
            )
        if self.tick_limit < 0:
            raise ConfigError(f"tick_limit must be >= 0, got {self.tick_limit}")
        if self.queue_capacity < 1:
            raise ConfigError(f"queue_capacity must be >= 1, got {self.queue_capacity}")
        if self.persist_max_attempts < 1:
            raise ConfigError(f"persist_max_attempts must be >= 1, got {self.persist_max_attempts}")
        if self.live_persist_every_s < 0:
            raise ConfigError(f"live_persist_every_s must be >= 0, got {self.live_persist_every_s}")
        if self.replay_speed < 0:
            raise ConfigError(f"replay_speed must be >= 0, got {self.replay_speed}")
        if self.provider_mode == "replay" and not self.replay_file:
            raise ConfigError("Replay mode needs ASR_REPLAY_FILE.")
        return self
