from __future__ import annotations

import datetime as dt
import sqlite3

import pytest

from acc_session_recorder.errors import PersistenceFailure
from acc_session_recorder.models.session import Lap, LapSector, Session
from acc_session_recorder.storage.session_store import SQLiteSessionStore

from conftest import drive_laps


def _session(session_id: str, minute: int = 0, laps=None) -> Session:
    return Session(
        id=session_id,
        start_time=dt.datetime(2024, 5, 1, 12, minute, tzinfo=dt.timezone.utc),
        session_type="RACE",
        track="spa",
        car_model="bmw_m4_gt3",
        number_of_sectors=3,
        laps=list(laps or []),
    )


def _finished_lap(number: int, sector_times) -> Lap:
    return Lap(
        lap_number=number,
        lap_time=sum(sector_times),
        is_active=False,
        sectors=[LapSector(i, t, is_active=False) for i, t in enumerate(sector_times)],
    )


class TestSQLiteSessionStore:
    def test_creates_parent_directory_and_schema(self, tmp_path):
        db_path = tmp_path / "nested" / "dir" / "sessions.sqlite"
        store = SQLiteSessionStore(db_path)
        assert db_path.exists()
        assert store.count_sessions() == 0

    def test_get_missing_session_returns_none(self, store):
        assert store.get("nope") is None

    def test_roundtrip_preserves_full_tree(self, store):
        session = _session("s1", laps=[_finished_lap(1, [30000, 25000, 20000]), Lap(lap_number=2)])
        session.laps[1].sectors.append(LapSector(0, 1200))
        session.completed_laps = 1
        session.best_lap = 75000

        store.upsert(session)

        loaded = store.get("s1")
        assert loaded.to_dict() == session.to_dict()
        assert loaded.start_time == session.start_time

    def test_upsert_is_idempotent(self, store):
        session = _session("s1", laps=[_finished_lap(1, [30000, 25000, 20000])])

        store.upsert(session)
        store.upsert(session)
        store.upsert(session.copy())

        assert store.count_sessions() == 1
        assert store.get("s1").to_dict() == session.to_dict()

    def test_later_upsert_replaces_laps_and_sectors(self, store):
        session = _session("s1", laps=[Lap(lap_number=1, sectors=[LapSector(0)])])
        store.upsert(session)

        session.laps[0] = _finished_lap(1, [30000, 25000, 20000])
        session.laps.append(Lap(lap_number=2, sectors=[LapSector(0)]))
        session.is_active = False
        store.upsert(session)

        loaded = store.get("s1")
        assert [lap.lap_number for lap in loaded.laps] == [1, 2]
        assert [s.sector_time for s in loaded.laps[0].sectors] == [30000, 25000, 20000]
        assert loaded.is_active is False

    def test_sector_order_is_preserved_even_when_numbers_repeat(self, store):
        lap = Lap(
            lap_number=1,
            sectors=[LapSector(0, 100, False), LapSector(2, 200, False), LapSector(1, 300, True)],
        )
        store.upsert(_session("s1", laps=[lap]))
        assert [s.sector_number for s in store.get("s1").laps[0].sectors] == [0, 2, 1]

    def test_list_recent_newest_first_with_limit(self, store):
        for minute, session_id in [(5, "mid"), (1, "old"), (9, "new")]:
            store.upsert(_session(session_id, minute=minute))

        assert [s.id for s in store.list_recent()] == ["new", "mid", "old"]
        assert [s.id for s in store.list_recent(limit=2)] == ["new", "mid"]
        assert store.list_recent(limit=0) == []

    def test_list_recent_loads_laps(self, store, tracker):
        for snapshot in drive_laps([[30000, 25000, 20000], [29000, 25000, 20000]]):
            tracker.update(snapshot)
        store.upsert(tracker.current_session)

        (loaded,) = store.list_recent()
        assert [lap.lap_time for lap in loaded.laps[:2]] == [75000, 74000]
        assert loaded.best_lap == 74000

    def test_sqlite_errors_become_persistence_failures(self, tmp_path):
        store = SQLiteSessionStore(tmp_path / "sessions.sqlite")
        with sqlite3.connect(tmp_path / "sessions.sqlite") as conn:
            conn.execute("DROP TABLE lap_sectors")

        with pytest.raises(PersistenceFailure):
            store.upsert(_session("s1", laps=[_finished_lap(1, [1, 2, 3])]))
