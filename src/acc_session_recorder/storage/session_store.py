from __future__ import annotations

import datetime as dt
import sqlite3
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from acc_session_recorder.errors import PersistenceFailure
from acc_session_recorder.models.session import Lap, LapSector, Session

DEFAULT_RECENT_LIMIT = 20


class SessionStore(ABC):
    """Durable session storage. ``upsert`` must be idempotent per session id."""

    @abstractmethod
    def upsert(self, session: Session) -> None:
        """Store ``session`` with all its laps and sectors. Raises ``PersistenceFailure``."""

    @abstractmethod
    def get(self, session_id: str) -> Optional[Session]:
        pass

    @abstractmethod
    def list_recent(self, limit: int = DEFAULT_RECENT_LIMIT) -> List[Session]:
        """Most recently started sessions first, with full lap/sector history."""


class SQLiteSessionStore(SessionStore):
    """Persists recorded sessions to a local SQLite database."""

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), timeout=5.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS sessions (
                    id TEXT PRIMARY KEY,
                    start_time TEXT NOT NULL,
                    session_type TEXT NOT NULL,
                    track TEXT NOT NULL,
                    car_model TEXT NOT NULL,
                    number_of_sectors INTEGER NOT NULL,
                    completed_laps INTEGER NOT NULL,
                    best_lap INTEGER,
                    is_active INTEGER NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS laps (
                    session_id TEXT NOT NULL REFERENCES sessions (id) ON DELETE CASCADE,
                    lap_number INTEGER NOT NULL,
                    lap_time INTEGER NOT NULL,
                    lap_delta INTEGER NOT NULL,
                    is_valid INTEGER NOT NULL,
                    is_active INTEGER NOT NULL,
                    PRIMARY KEY (session_id, lap_number)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS lap_sectors (
                    session_id TEXT NOT NULL REFERENCES sessions (id) ON DELETE CASCADE,
                    lap_number INTEGER NOT NULL,
                    position INTEGER NOT NULL,
                    sector_number INTEGER NOT NULL,
                    sector_time INTEGER NOT NULL,
                    is_active INTEGER NOT NULL,
                    PRIMARY KEY (session_id, lap_number, position)
                )
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_sessions_start_time
                ON sessions (start_time DESC)
                """
            )

    def upsert(self, session: Session) -> None:
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO sessions (
                        id, start_time, session_type, track, car_model,
                        number_of_sectors, completed_laps, best_lap, is_active
                    ) VALUES (
                        :id, :start_time, :session_type, :track, :car_model,
                        :number_of_sectors, :completed_laps, :best_lap, :is_active
                    )
                    ON CONFLICT(id) DO UPDATE SET
                        start_time = excluded.start_time,
                        session_type = excluded.session_type,
                        track = excluded.track,
                        car_model = excluded.car_model,
                        number_of_sectors = excluded.number_of_sectors,
                        completed_laps = excluded.completed_laps,
                        best_lap = excluded.best_lap,
                        is_active = excluded.is_active
                    """,
                    {
                        "id": session.id,
                        "start_time": session.start_time.isoformat(),
                        "session_type": session.session_type,
                        "track": session.track,
                        "car_model": session.car_model,
                        "number_of_sectors": session.number_of_sectors,
                        "completed_laps": session.completed_laps,
                        "best_lap": session.best_lap,
                        "is_active": int(session.is_active),
                    },
                )
                # Laps are owned by the session; rewrite them wholesale so a
                # replayed upsert converges on the same rows.
                conn.execute("DELETE FROM lap_sectors WHERE session_id = ?", (session.id,))
                conn.execute("DELETE FROM laps WHERE session_id = ?", (session.id,))
                conn.executemany(
                    """
                    INSERT INTO laps (session_id, lap_number, lap_time, lap_delta, is_valid, is_active)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (session.id, lap.lap_number, lap.lap_time, lap.lap_delta, int(lap.is_valid), int(lap.is_active))
                        for lap in session.laps
                    ],
                )
                conn.executemany(
                    """
                    INSERT INTO lap_sectors (session_id, lap_number, position, sector_number, sector_time, is_active)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (session.id, lap.lap_number, position, sector.sector_number, sector.sector_time, int(sector.is_active))
                        for lap in session.laps
                        for position, sector in enumerate(lap.sectors)
                    ],
                )
                conn.commit()
        except sqlite3.Error as exc:
            raise PersistenceFailure(f"upsert of session {session.id} failed: {exc}") from exc

    def get(self, session_id: str) -> Optional[Session]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
            if row is None:
                return None
            return self._load_sessions(conn, [row])[0]

    def list_recent(self, limit: int = DEFAULT_RECENT_LIMIT) -> List[Session]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM sessions
                ORDER BY start_time DESC
                LIMIT ?
                """,
                (max(0, int(limit)),),
            ).fetchall()
            return self._load_sessions(conn, rows)

    def count_sessions(self) -> int:
        with self._connect() as conn:
            row = conn.execute("SELECT COUNT(*) AS n FROM sessions").fetchone()
            return int(row["n"]) if row is not None else 0

    def _load_sessions(self, conn: sqlite3.Connection, rows: Sequence[sqlite3.Row]) -> List[Session]:
        if not rows:
            return []
        ids = [str(row["id"]) for row in rows]
        placeholders = ", ".join("?" for _ in ids)

        laps_by_session: Dict[str, List[Lap]] = {session_id: [] for session_id in ids}
        laps_by_key: Dict[tuple[str, int], Lap] = {}
        for lap_row in conn.execute(
            f"SELECT * FROM laps WHERE session_id IN ({placeholders}) ORDER BY session_id, lap_number",
            ids,
        ).fetchall():
            lap = Lap(
                lap_number=int(lap_row["lap_number"]),
                lap_time=int(lap_row["lap_time"]),
                lap_delta=int(lap_row["lap_delta"]),
                is_valid=bool(lap_row["is_valid"]),
                is_active=bool(lap_row["is_active"]),
            )
            laps_by_session[str(lap_row["session_id"])].append(lap)
            laps_by_key[(str(lap_row["session_id"]), lap.lap_number)] = lap

        for sector_row in conn.execute(
            f"""
            SELECT * FROM lap_sectors
            WHERE session_id IN ({placeholders})
            ORDER BY session_id, lap_number, position
            """,
            ids,
        ).fetchall():
            lap = laps_by_key.get((str(sector_row["session_id"]), int(sector_row["lap_number"])))
            if lap is None:
                continue
            lap.sectors.append(
                LapSector(
                    sector_number=int(sector_row["sector_number"]),
                    sector_time=int(sector_row["sector_time"]),
                    is_active=bool(sector_row["is_active"]),
                )
            )

        return [self._row_to_session(row, laps_by_session[str(row["id"])]) for row in rows]

    def _row_to_session(self, row: sqlite3.Row, laps: List[Lap]) -> Session:
        return Session(
            id=str(row["id"]),
            start_time=dt.datetime.fromisoformat(str(row["start_time"])),
            session_type=str(row["session_type"]),
            track=str(row["track"]),
            car_model=str(row["car_model"]),
            number_of_sectors=int(row["number_of_sectors"]),
            completed_laps=int(row["completed_laps"]),
            best_lap=int(row["best_lap"]) if row["best_lap"] is not None else None,
            is_active=bool(row["is_active"]),
            laps=laps,
        )
