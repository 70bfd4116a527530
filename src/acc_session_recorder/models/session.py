from __future__ import annotations

import copy
import datetime as dt
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(slots=True)
class LapSector:
    sector_number: int
    sector_time: int = 0
    is_active: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sector_number": self.sector_number,
            "sector_time": self.sector_time,
            "is_active": self.is_active,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> LapSector:
        return cls(
            sector_number=int(data["sector_number"]),
            sector_time=int(data.get("sector_time") or 0),
            is_active=bool(data.get("is_active", False)),
        )


@dataclass(slots=True)
class Lap:
    lap_number: int
    lap_time: int = 0
    lap_delta: int = 0
    is_valid: bool = True
    is_active: bool = True
    sectors: List[LapSector] = field(default_factory=list)

    @property
    def active_sector(self) -> Optional[LapSector]:
        for sector in reversed(self.sectors):
            if sector.is_active:
                return sector
        return None

    def finalized_sector_time(self) -> int:
        return sum(sector.sector_time for sector in self.sectors if not sector.is_active)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lap_number": self.lap_number,
            "lap_time": self.lap_time,
            "lap_delta": self.lap_delta,
            "is_valid": self.is_valid,
            "is_active": self.is_active,
            "sectors": [sector.to_dict() for sector in self.sectors],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Lap:
        return cls(
            lap_number=int(data["lap_number"]),
            lap_time=int(data.get("lap_time") or 0),
            lap_delta=int(data.get("lap_delta") or 0),
            is_valid=bool(data.get("is_valid", True)),
            is_active=bool(data.get("is_active", False)),
            sectors=[LapSector.from_dict(item) for item in data.get("sectors", [])],
        )


@dataclass(slots=True)
class Session:
    """One recorded session and its full lap/sector history."""

    id: str
    start_time: dt.datetime
    session_type: str
    track: str
    car_model: str
    number_of_sectors: int
    completed_laps: int = 0
    best_lap: Optional[int] = None
    is_active: bool = True
    laps: List[Lap] = field(default_factory=list)

    @property
    def active_lap(self) -> Optional[Lap]:
        for lap in reversed(self.laps):
            if lap.is_active:
                return lap
        return None

    def copy(self) -> Session:
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "start_time": self.start_time.isoformat(),
            "session_type": self.session_type,
            "track": self.track,
            "car_model": self.car_model,
            "number_of_sectors": self.number_of_sectors,
            "completed_laps": self.completed_laps,
            "best_lap": self.best_lap,
            "is_active": self.is_active,
            "laps": [lap.to_dict() for lap in self.laps],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Session:
        start_time = data["start_time"]
        if isinstance(start_time, str):
            start_time = dt.datetime.fromisoformat(start_time)
        best_lap = data.get("best_lap")
        return cls(
            id=str(data["id"]),
            start_time=start_time,
            session_type=str(data["session_type"]),
            track=str(data["track"]),
            car_model=str(data["car_model"]),
            number_of_sectors=int(data["number_of_sectors"]),
            completed_laps=int(data.get("completed_laps") or 0),
            best_lap=int(best_lap) if best_lap is not None else None,
            is_active=bool(data.get("is_active", False)),
            laps=[Lap.from_dict(item) for item in data.get("laps", [])],
        )
