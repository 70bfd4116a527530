from __future__ import annotations

import datetime as dt
import re
import sys

import pytest

from acc_session_recorder import main as main_module
from acc_session_recorder.models.session import Lap, LapSector, Session
from acc_session_recorder.runtime_logging import configure_runtime_log, restore_runtime_streams
from acc_session_recorder.storage.session_store import SQLiteSessionStore


class TestRuntimeLog:
    def test_tees_output_into_log_file(self, tmp_path, capsys):
        log_path = configure_runtime_log(tmp_path / "logs" / "recorder.log")
        try:
            print("[POLL] hello")
            print("[PERSIST][ERROR] boom", file=sys.stderr)
        finally:
            restore_runtime_streams()

        content = log_path.read_text(encoding="utf-8")
        assert "recorder started" in content
        assert "[POLL] hello" in content
        assert "[PERSIST][ERROR] boom" in content
        captured = capsys.readouterr()
        assert "[POLL] hello" in captured.out
        assert "boom" in captured.err

    def test_log_lines_carry_timestamps(self, tmp_path):
        log_path = configure_runtime_log(tmp_path / "recorder.log")
        try:
            print("[POLL] hello")
            sys.stdout.write("[LAP 001] ")
            sys.stdout.write("time=75000ms\n")
        finally:
            restore_runtime_streams()

        content = log_path.read_text(encoding="utf-8")
        assert re.search(r"^\d{2}:\d{2}:\d{2}\.\d{3} \[POLL\] hello$", content, re.MULTILINE)
        assert re.search(r"^\d{2}:\d{2}:\d{2}\.\d{3} \[LAP 001\] time=75000ms$", content, re.MULTILINE)

    def test_configure_twice_does_not_nest_mirrors(self, tmp_path):
        configure_runtime_log(tmp_path / "a.log")
        second = configure_runtime_log(tmp_path / "b.log")
        try:
            print("[RUN] once")
        finally:
            restore_runtime_streams()

        assert second.read_text(encoding="utf-8").count("[RUN] once") == 1
        assert "[RUN] once" not in (tmp_path / "a.log").read_text(encoding="utf-8")

    def test_restore_without_configure_is_noop(self):
        stdout = sys.stdout
        restore_runtime_streams()
        assert sys.stdout is stdout


class TestMain:
    @pytest.fixture
    def environ(self, tmp_path, monkeypatch):
        monkeypatch.setattr(main_module, "_install_stop_handlers", lambda stop_event: None)
        values = {
            "ASR_PROVIDER": "mock",
            "ASR_POLL_HZ": "1000",
            "ASR_MAX_BACKOFF_S": "0.01",
            "ASR_TICK_LIMIT": "20",
            "ASR_DB": str(tmp_path / "sessions.sqlite"),
            "ASR_OUTPUT_DIR": str(tmp_path / "out"),
            "ASR_LOG_FILE": str(tmp_path / "recorder.log"),
            "ASR_PERSIST_PARQUET": "0",
        }
        for name, value in values.items():
            monkeypatch.setenv(name, value)
        return values

    def test_runs_mock_recording(self, environ, tmp_path):
        main_module.main()

        sessions = SQLiteSessionStore(tmp_path / "sessions.sqlite").list_recent()
        assert len(sessions) == 1
        assert sessions[0].track == "spa"
        log = (tmp_path / "recorder.log").read_text(encoding="utf-8")
        assert "[BOOT] provider=mock" in log
        assert "[RUN] stopped ticks=20" in log

    def test_invalid_configuration_exits_with_status_2(self, environ, monkeypatch):
        monkeypatch.setenv("ASR_POLL_HZ", "-1")
        with pytest.raises(SystemExit) as info:
            main_module.main()
        assert info.value.code == 2


class TestSessionModel:
    def test_from_dict_rebuilds_tree(self):
        session = Session(
            id="s1",
            start_time=dt.datetime(2024, 5, 1, 12, 0),
            session_type="QUALIFY",
            track="imola",
            car_model="audi_r8_lms_evo_ii",
            number_of_sectors=3,
            completed_laps=1,
            best_lap=101_000,
            laps=[
                Lap(1, 101_000, 0, True, False, [LapSector(0, 33_000, False), LapSector(1, 34_000, False), LapSector(2, 34_000, False)]),
                Lap(2, 12_000, sectors=[LapSector(0, 12_000)]),
            ],
        )

        rebuilt = Session.from_dict(session.to_dict())

        assert rebuilt == session
        assert rebuilt.active_lap.lap_number == 2
        assert rebuilt.active_lap.active_sector.sector_time == 12_000

    def test_copy_is_independent(self):
        session = Session("s1", dt.datetime(2024, 5, 1), "RACE", "spa", "bmw_m4_gt3", 3)
        session.laps.append(Lap(1, sectors=[LapSector(0)]))
        copied = session.copy()
        copied.laps[0].sectors[0].sector_time = 999
        assert session.laps[0].sectors[0].sector_time == 0
