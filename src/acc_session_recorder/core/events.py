from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Optional

from acc_session_recorder.models.session import Lap, LapSector, Session


@dataclass(frozen=True, slots=True)
class RecorderEvent:
    """Base of the closed set of tracker events.

    ``session`` is a deep copy taken at emission time, so consumers on other
    threads never observe later tracker mutations.
    """

    session_id: str
    session: Session

    name: ClassVar[str] = "event"
    durable: ClassVar[bool] = True


@dataclass(frozen=True, slots=True)
class SessionStarted(RecorderEvent):
    name: ClassVar[str] = "session_started"


@dataclass(frozen=True, slots=True)
class SessionEnded(RecorderEvent):
    name: ClassVar[str] = "session_ended"


@dataclass(frozen=True, slots=True)
class LapFinalized(RecorderEvent):
    lap_number: int = 0
    lap: Optional[Lap] = None

    name: ClassVar[str] = "lap_finalized"


@dataclass(frozen=True, slots=True)
class SectorFinalized(RecorderEvent):
    lap_number: int = 0
    sector_number: int = 0
    sector: Optional[LapSector] = None

    name: ClassVar[str] = "sector_finalized"


@dataclass(frozen=True, slots=True)
class LiveUpdate(RecorderEvent):
    lap_number: int = 0
    sector_number: int = 0

    name: ClassVar[str] = "live_update"
    durable: ClassVar[bool] = False


EVENT_TYPES = (SessionStarted, SessionEnded, LapFinalized, SectorFinalized, LiveUpdate)
EVENT_NAMES = tuple(event_type.name for event_type in EVENT_TYPES)
