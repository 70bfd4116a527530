from __future__ import annotations

import csv
from pathlib import Path
from typing import Any, Dict, List

import pyarrow as pa
import pyarrow.parquet as pq

from acc_session_recorder.models.session import Session

_SECTOR_COLUMNS = 8


def session_lap_rows(session: Session) -> List[Dict[str, Any]]:
    """Flatten a session into one row per lap, sector times as ``sector_<n>_ms`` columns."""
    width = max(session.number_of_sectors, max((len(lap.sectors) for lap in session.laps), default=0))
    width = min(width, _SECTOR_COLUMNS)
    rows: List[Dict[str, Any]] = []
    for lap in session.laps:
        row: Dict[str, Any] = {
            "session_id": session.id,
            "start_time": session.start_time.isoformat(),
            "session_type": session.session_type,
            "track": session.track,
            "car_model": session.car_model,
            "lap_number": lap.lap_number,
            "lap_time_ms": lap.lap_time,
            "lap_delta_ms": lap.lap_delta,
            "is_valid": lap.is_valid,
            "is_best_lap": session.best_lap is not None and lap.is_valid and lap.lap_time == session.best_lap,
        }
        for index in range(width):
            row[f"sector_{index}_ms"] = lap.sectors[index].sector_time if index < len(lap.sectors) else None
        rows.append(row)
    return rows


class LapExporter:
    """CSV and Parquet export of finished sessions."""

    def __init__(self, output_dir: Path) -> None:
        self.output_dir = output_dir
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def _base_name(self, session: Session) -> str:
        stamp = session.start_time.strftime("%Y%m%dT%H%M%S")
        return f"session_{stamp}_{session.id}_laps"

    def save_csv(self, session: Session) -> Path:
        rows = session_lap_rows(session)
        file_path = self.output_dir / f"{self._base_name(session)}.csv"
        if not rows:
            file_path.write_text("", encoding="utf-8")
            return file_path

        with file_path.open("w", newline="", encoding="utf-8") as fp:
            writer = csv.DictWriter(fp, fieldnames=list(rows[0].keys()))
            writer.writeheader()
            writer.writerows(rows)
        return file_path

    def save_parquet(self, session: Session) -> Path:
        rows = session_lap_rows(session)
        file_path = self.output_dir / f"{self._base_name(session)}.parquet"
        table = pa.Table.from_pylist(rows) if rows else pa.Table.from_pylist([{"session_id": session.id}]).slice(0, 0)
        pq.write_table(table, file_path)
        return file_path
