from __future__ import annotations

import datetime as dt
import uuid
from dataclasses import dataclass
from typing import Callable, List, Optional

from acc_session_recorder.core.events import (
    LapFinalized,
    LiveUpdate,
    RecorderEvent,
    SectorFinalized,
    SessionEnded,
    SessionStarted,
)
from acc_session_recorder.errors import InvariantViolation
from acc_session_recorder.models.session import Lap, LapSector, Session
from acc_session_recorder.models.telemetry import AccStatus, Snapshot, session_type_name

Clock = Callable[[], dt.datetime]
IdFactory = Callable[[], str]


def _utc_now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _new_session_id() -> str:
    return uuid.uuid4().hex


@dataclass(slots=True)
class TrackerState:
    current_session: Optional[Session] = None
    completed_laps: int = 0
    sector_index: int = 0
    last_snapshot: Optional[Snapshot] = None


class SessionTracker:
    """Derives sessions, laps and sectors from consecutive telemetry snapshots.

    Rules are evaluated in priority order on every snapshot: no session yet,
    session rollover (completed laps went down), lap rollover (completed laps
    went up), sector rollover (sector index changed), live update. Events
    from a single snapshot are returned sector first, then lap, then session.

    Not thread-safe: one loop owns a tracker and is the only writer of its
    session tree.
    """

    def __init__(
        self,
        state: TrackerState | None = None,
        clock: Clock = _utc_now,
        id_factory: IdFactory = _new_session_id,
    ) -> None:
        self.state = state or TrackerState()
        self._clock = clock
        self._id_factory = id_factory
        self.anomalies: List[InvariantViolation] = []

    @property
    def current_session(self) -> Optional[Session]:
        return self.state.current_session

    def update(self, snapshot: Snapshot) -> List[RecorderEvent]:
        if snapshot.status == AccStatus.OFF:
            return []

        state = self.state
        events: List[RecorderEvent] = []

        if state.current_session is None:
            events.extend(self._start_session(snapshot))
        elif snapshot.completed_laps < state.completed_laps:
            events.extend(self._end_session_on_restart())
            events.extend(self._start_session(snapshot))
        elif snapshot.completed_laps > state.completed_laps:
            events.extend(self._roll_lap(snapshot))
        elif snapshot.current_sector_index != state.sector_index:
            events.extend(self._roll_sector(snapshot))
        else:
            events.append(self._live_update(snapshot))

        state.completed_laps = snapshot.completed_laps
        state.sector_index = snapshot.current_sector_index
        state.last_snapshot = snapshot
        return events

    def finish(self) -> List[RecorderEvent]:
        """Close the in-flight session from its last known live values.

        Used on shutdown. Unlike a restart mid-lap, the active lap and sector
        are kept; the lap is incomplete so it does not count as a completed
        lap nor as a best-lap candidate.
        """
        session = self.state.current_session
        if session is None:
            return []

        events: List[RecorderEvent] = []
        lap = session.active_lap
        if lap is not None:
            sector = lap.active_sector
            if sector is not None:
                sector.is_active = False
                events.append(self._sector_event(session, lap, sector))
            lap.is_active = False
            events.append(self._lap_event(session, lap))

        session.is_active = False
        events.append(SessionEnded(session_id=session.id, session=session.copy()))
        print(f"[SESSION] ended on stop id={session.id} laps={session.completed_laps}")

        self.state = TrackerState()
        return events

    def _start_session(self, snapshot: Snapshot) -> List[RecorderEvent]:
        session = Session(
            id=self._id_factory(),
            start_time=self._clock(),
            session_type=session_type_name(snapshot.session_type),
            track=snapshot.track,
            car_model=snapshot.car_model,
            number_of_sectors=snapshot.sector_count,
            completed_laps=max(0, snapshot.completed_laps),
        )
        lap = Lap(lap_number=max(0, snapshot.completed_laps) + 1, is_valid=snapshot.is_valid)
        lap.sectors.append(LapSector(sector_number=max(0, snapshot.current_sector_index)))
        session.laps.append(lap)
        self.state.current_session = session
        print(
            f"[SESSION] started id={session.id} type={session.session_type} "
            f"track={session.track} car={session.car_model} sectors={session.number_of_sectors}"
        )
        return [SessionStarted(session_id=session.id, session=session.copy())]

    def _end_session_on_restart(self) -> List[RecorderEvent]:
        session = self.state.current_session
        assert session is not None
        # The feed only ever reports the previous lap's times, so a lap that
        # was still running when the session restarted cannot be completed.
        lap = session.active_lap
        if lap is not None:
            session.laps.remove(lap)
            print(
                f"[SESSION] restart detected, discarding partial lap {lap.lap_number} "
                f"({len(lap.sectors)} sectors)"
            )
        session.is_active = False
        print(f"[SESSION] ended id={session.id} laps={session.completed_laps} best={session.best_lap}")
        return [SessionEnded(session_id=session.id, session=session.copy())]

    def _roll_lap(self, snapshot: Snapshot) -> List[RecorderEvent]:
        session = self.state.current_session
        assert session is not None
        events: List[RecorderEvent] = []
        skipped = list(range(self.state.completed_laps + 2, snapshot.completed_laps + 1))
        if skipped:
            self._record_anomaly(
                f"completed laps jumped {self.state.completed_laps} -> {snapshot.completed_laps}; "
                f"laps {skipped} were not observed"
            )

        lap = session.active_lap
        if lap is not None:
            sector = lap.active_sector
            if sector is not None:
                sector.sector_time = snapshot.previous_sector_time
                sector.is_active = False
                events.append(self._sector_event(session, lap, sector))
            lap.lap_time = snapshot.previous_lap_time
            lap.is_active = False
            self._apply_best_lap(session, lap)
            session.completed_laps = snapshot.completed_laps
            events.append(self._lap_event(session, lap))
            print(
                f"[LAP {lap.lap_number:03d}] time={lap.lap_time}ms delta={lap.lap_delta:+d}ms "
                f"valid={lap.is_valid} best={session.best_lap}"
            )
        else:
            session.completed_laps = snapshot.completed_laps

        next_lap = Lap(lap_number=snapshot.completed_laps + 1, is_valid=snapshot.is_valid)
        next_lap.sectors.append(LapSector(sector_number=0))
        session.laps.append(next_lap)
        if snapshot.current_sector_index != 0:
            self._record_anomaly(
                f"lap {next_lap.lap_number} started in sector index {snapshot.current_sector_index}"
            )
        return events

    def _roll_sector(self, snapshot: Snapshot) -> List[RecorderEvent]:
        session = self.state.current_session
        assert session is not None
        lap = session.active_lap
        if lap is None:
            return [self._live_update(snapshot)]

        new_index = snapshot.current_sector_index
        if new_index < self.state.sector_index:
            self._record_anomaly(
                f"sector index regressed {self.state.sector_index} -> {new_index} "
                f"on lap {lap.lap_number} without a lap or session rollover"
            )
        elif new_index > session.number_of_sectors - 1:
            self._record_anomaly(
                f"sector index {new_index} beyond track sector count {session.number_of_sectors}"
            )

        events: List[RecorderEvent] = []
        sector = lap.active_sector
        if sector is not None:
            sector.sector_time = snapshot.previous_sector_time
            sector.is_active = False
            events.append(self._sector_event(session, lap, sector))

        lap.sectors.append(LapSector(sector_number=new_index))
        if not snapshot.is_valid:
            lap.is_valid = False
        return events

    def _live_update(self, snapshot: Snapshot) -> RecorderEvent:
        session = self.state.current_session
        assert session is not None
        lap = session.active_lap
        sector_number = 0
        if lap is not None:
            lap.lap_time = snapshot.current_lap_time
            if not snapshot.is_valid:
                lap.is_valid = False
            sector = lap.active_sector
            if sector is not None:
                sector.sector_time = max(0, snapshot.current_lap_time - lap.finalized_sector_time())
                sector_number = sector.sector_number
        return LiveUpdate(
            session_id=session.id,
            session=session.copy(),
            lap_number=lap.lap_number if lap is not None else 0,
            sector_number=sector_number,
        )

    def _apply_best_lap(self, session: Session, lap: Lap) -> None:
        # Invalid laps stay in the history but never become the reference.
        if lap.is_valid and lap.lap_time > 0:
            if session.best_lap is None or lap.lap_time < session.best_lap:
                session.best_lap = lap.lap_time
        lap.lap_delta = lap.lap_time - session.best_lap if session.best_lap is not None else 0

    def _sector_event(self, session: Session, lap: Lap, sector: LapSector) -> SectorFinalized:
        return SectorFinalized(
            session_id=session.id,
            session=session.copy(),
            lap_number=lap.lap_number,
            sector_number=sector.sector_number,
            sector=LapSector(sector.sector_number, sector.sector_time, sector.is_active),
        )

    def _lap_event(self, session: Session, lap: Lap) -> LapFinalized:
        snapshot = session.copy()
        return LapFinalized(
            session_id=session.id,
            session=snapshot,
            lap_number=lap.lap_number,
            lap=next(item for item in snapshot.laps if item.lap_number == lap.lap_number),
        )

    def _record_anomaly(self, message: str) -> None:
        anomaly = InvariantViolation(message)
        self.anomalies.append(anomaly)
        print(f"[TRACK] anomaly: {message}")
