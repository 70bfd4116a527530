from __future__ import annotations

import csv
import time
from pathlib import Path
from typing import Any, Dict, List

import pyarrow.parquet as pq

from acc_session_recorder.errors import MalformedSnapshot, SourceUnavailable
from acc_session_recorder.models.telemetry import Snapshot
from acc_session_recorder.providers.base import TelemetrySource

_INT_FIELDS = (
    "status",
    "session_type",
    "sector_count",
    "number_of_cars",
    "completed_laps",
    "best_lap_time",
    "previous_lap_time",
    "current_lap_time",
    "current_sector_index",
    "previous_sector_time",
)
_BOOL_FIELDS = ("is_valid", "is_in_pit_lane", "is_in_pit")


def _to_bool(raw: object) -> bool:
    if isinstance(raw, bool):
        return raw
    return str(raw).strip().lower() in {"1", "true", "yes", "y"}


def _row_to_snapshot(row: Dict[str, Any]) -> Snapshot:
    try:
        values: Dict[str, Any] = {name: int(row[name]) for name in _INT_FIELDS}
        values.update({name: _to_bool(row.get(name, False)) for name in _BOOL_FIELDS})
        values["clock"] = float(row.get("clock") or 0.0)
        values["track"] = str(row.get("track") or "")
        values["car_model"] = str(row.get("car_model") or "")
    except (KeyError, TypeError, ValueError) as exc:
        raise MalformedSnapshot(f"invalid replay row: {exc}") from exc
    return Snapshot(**values)


class ReplayTelemetrySource(TelemetrySource):
    """Plays back recorded snapshots from CSV/Parquet files.

    With ``speed > 0`` each read waits for the recorded clock delta divided
    by ``speed``; ``speed == 0`` replays as fast as it is polled. Once every
    row was returned, reads raise ``SourceUnavailable`` and ``exhausted`` is
    True.
    """

    def __init__(self, replay_file: str, speed: float = 0.0) -> None:
        self.replay_file = replay_file
        self.speed = max(0.0, speed)
        self._connected = False
        self._rows: List[Dict[str, Any]] = []
        self._position = 0
        self._previous_clock: float | None = None

    @property
    def exhausted(self) -> bool:
        return self._connected and self._position >= len(self._rows)

    def connect(self) -> None:
        file_path = Path(self.replay_file)
        if not self.replay_file:
            raise RuntimeError("ASR_REPLAY_FILE not set.")
        if not file_path.exists():
            raise RuntimeError(f"Replay file not found: {file_path}")

        ext = file_path.suffix.lower()
        if ext == ".csv":
            with file_path.open("r", newline="", encoding="utf-8") as fp:
                self._rows = list(csv.DictReader(fp))
        elif ext in {".parquet", ".pq"}:
            self._rows = pq.read_table(file_path).to_pylist()
        else:
            raise RuntimeError("Invalid replay file. Use .csv or .parquet.")

        if not self._rows:
            raise RuntimeError("Replay file is empty.")
        self._position = 0
        self._previous_clock = None
        self._connected = True

    def read(self) -> Snapshot:
        if not self._connected:
            raise SourceUnavailable("Replay not connected.")
        if self._position >= len(self._rows):
            raise SourceUnavailable("Replay exhausted.")

        row = self._rows[self._position]
        self._position += 1
        snapshot = _row_to_snapshot(row)

        if self.speed > 0.0 and self._previous_clock is not None:
            sleep_s = max(0.0, snapshot.clock - self._previous_clock) / self.speed
            if sleep_s > 0.0:
                time.sleep(sleep_s)
        self._previous_clock = snapshot.clock
        return snapshot

    def close(self) -> None:
        self._connected = False
        self._rows = []
        self._position = 0
