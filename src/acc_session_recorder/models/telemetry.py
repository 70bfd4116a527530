from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum


class AccStatus(IntEnum):
    OFF = 0
    REPLAY = 1
    LIVE = 2
    PAUSE = 3


class AccSessionType(IntEnum):
    UNKNOWN = -1
    PRACTICE = 0
    QUALIFY = 1
    RACE = 2
    HOTLAP = 3
    TIME_ATTACK = 4
    DRIFT = 5
    DRAG = 6
    HOTSTINT = 7
    HOTLAP_SUPERPOLE = 8


def session_type_name(raw: int) -> str:
    try:
        return AccSessionType(raw).name
    except ValueError:
        return AccSessionType.UNKNOWN.name


@dataclass(frozen=True, slots=True)
class Snapshot:
    """Single telemetry sample consumed by the tracker. Times are milliseconds."""

    status: int
    session_type: int
    track: str
    car_model: str
    sector_count: int
    number_of_cars: int
    clock: float
    completed_laps: int
    best_lap_time: int
    previous_lap_time: int
    current_lap_time: int
    current_sector_index: int
    previous_sector_time: int
    is_valid: bool = True
    is_in_pit_lane: bool = False
    is_in_pit: bool = False
