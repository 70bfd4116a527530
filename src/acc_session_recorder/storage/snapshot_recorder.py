from __future__ import annotations

import csv
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List, Optional

import pyarrow as pa
import pyarrow.parquet as pq

from acc_session_recorder.models.telemetry import Snapshot


def snapshot_row(snapshot: Snapshot) -> Dict[str, Any]:
    row = asdict(snapshot)
    # Enum fields are stored as their raw integer values.
    row["status"] = int(snapshot.status)
    row["session_type"] = int(snapshot.session_type)
    return row


class SnapshotRecorder:
    """Stores raw snapshots by session for replay and offline analysis."""

    def __init__(self, output_dir: Path) -> None:
        self.output_dir = output_dir
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self._snapshots_by_session: Dict[str, List[Snapshot]] = {}

    def record(self, session_id: str, snapshot: Snapshot) -> None:
        self._snapshots_by_session.setdefault(session_id, []).append(snapshot)

    def pending(self) -> List[str]:
        return list(self._snapshots_by_session.keys())

    def flush_session(self, session_id: str, persist_parquet: bool = True) -> tuple[Optional[Path], Optional[Path]]:
        snapshots = self._snapshots_by_session.pop(session_id, [])
        if not snapshots:
            return None, None

        rows = [snapshot_row(snapshot) for snapshot in snapshots]
        csv_path = self.output_dir / f"session_{session_id}_snapshots.csv"
        with csv_path.open("w", newline="", encoding="utf-8") as fp:
            writer = csv.DictWriter(fp, fieldnames=list(rows[0].keys()))
            writer.writeheader()
            writer.writerows(rows)

        parquet_path: Optional[Path] = None
        if persist_parquet:
            parquet_path = self.output_dir / f"session_{session_id}_snapshots.parquet"
            pq.write_table(pa.Table.from_pylist(rows), parquet_path)

        return csv_path, parquet_path
