"""Shared fixtures: scripted telemetry, snapshot factory, deterministic tracker."""

from __future__ import annotations

import dataclasses
import datetime as dt
import itertools
from typing import Iterable, List, Union

import pytest

from acc_session_recorder.errors import MalformedSnapshot, SourceUnavailable
from acc_session_recorder.models.telemetry import AccSessionType, AccStatus, Snapshot
from acc_session_recorder.providers.base import TelemetrySource
from acc_session_recorder.storage.session_store import SQLiteSessionStore
from acc_session_recorder.tracking.session_tracker import SessionTracker

BASE_SNAPSHOT = Snapshot(
    status=AccStatus.LIVE,
    session_type=AccSessionType.PRACTICE,
    track="monza",
    car_model="ferrari_296_gt3",
    sector_count=3,
    number_of_cars=1,
    clock=43_200.0,
    completed_laps=0,
    best_lap_time=0,
    previous_lap_time=0,
    current_lap_time=0,
    current_sector_index=0,
    previous_sector_time=0,
)


def snap(**overrides) -> Snapshot:
    return dataclasses.replace(BASE_SNAPSHOT, **overrides)


def lap_snapshots(
    completed_laps: int,
    sector_times: Iterable[int],
    previous_lap_time: int = 0,
    ticks_per_sector: int = 2,
) -> List[Snapshot]:
    """Snapshots driving through one lap whose sectors take ``sector_times``.

    The first snapshot sits at the start of the lap; the last one is still in
    the final sector (the rollover snapshot is not included).
    """
    sector_times = list(sector_times)
    snapshots: List[Snapshot] = []
    elapsed = 0
    previous_sector_time = 0
    for index, sector_time in enumerate(sector_times):
        for tick in range(ticks_per_sector):
            snapshots.append(
                snap(
                    completed_laps=completed_laps,
                    previous_lap_time=previous_lap_time,
                    current_lap_time=elapsed + tick * (sector_time // ticks_per_sector),
                    current_sector_index=index,
                    previous_sector_time=previous_sector_time,
                )
            )
        elapsed += sector_time
        previous_sector_time = sector_time
    return snapshots


def drive_laps(lap_sectors: List[List[int]], sector_count: int = 3) -> List[Snapshot]:
    """Snapshots for consecutive complete laps, ending on the last lap's rollover."""
    snapshots: List[Snapshot] = []
    previous_lap_time = 0
    for completed, sectors in enumerate(lap_sectors):
        snapshots.extend(
            dataclasses.replace(s, sector_count=sector_count)
            for s in lap_snapshots(completed, sectors, previous_lap_time=previous_lap_time)
        )
        previous_lap_time = sum(sectors)
        snapshots.append(
            snap(
                sector_count=sector_count,
                completed_laps=completed + 1,
                previous_lap_time=previous_lap_time,
                current_lap_time=0,
                current_sector_index=0,
                previous_sector_time=sectors[-1],
            )
        )
    return snapshots


ScriptItem = Union[Snapshot, Exception]


class ScriptedTelemetrySource(TelemetrySource):
    """Returns scripted snapshots (or raises scripted errors) in order.

    Once the script runs out, reads raise ``SourceUnavailable`` and
    ``exhausted`` turns True.
    """

    def __init__(self, script: Iterable[ScriptItem]) -> None:
        self._script = list(script)
        self._position = 0
        self.reads = 0
        self.connected = False
        self.closed = False

    @property
    def exhausted(self) -> bool:
        return self._position >= len(self._script)

    def connect(self) -> None:
        self.connected = True

    def read(self) -> Snapshot:
        self.reads += 1
        if self._position >= len(self._script):
            raise SourceUnavailable("script exhausted")
        item = self._script[self._position]
        self._position += 1
        if isinstance(item, Exception):
            raise item
        return item

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def fixed_clock():
    start = dt.datetime(2024, 5, 1, 12, 0, tzinfo=dt.timezone.utc)
    counter = itertools.count()

    def clock() -> dt.datetime:
        return start + dt.timedelta(minutes=next(counter))

    return clock


@pytest.fixture
def id_factory():
    counter = itertools.count(1)
    return lambda: f"session-{next(counter):03d}"


@pytest.fixture
def tracker(fixed_clock, id_factory) -> SessionTracker:
    return SessionTracker(clock=fixed_clock, id_factory=id_factory)


@pytest.fixture
def store(tmp_path) -> SQLiteSessionStore:
    return SQLiteSessionStore(tmp_path / "sessions.sqlite")


@pytest.fixture
def malformed() -> MalformedSnapshot:
    return MalformedSnapshot("graphics buffer too short", expected_size=1588, actual_size=12)
