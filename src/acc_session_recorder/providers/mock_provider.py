from __future__ import annotations

from acc_session_recorder.models.telemetry import AccSessionType, AccStatus, Snapshot
from acc_session_recorder.providers.base import TelemetrySource


class MockTelemetrySource(TelemetrySource):
    """Deterministic synthetic laps to exercise the full pipeline.

    Every ``read`` advances simulated time by ``tick_ms``. Laps alternate
    slightly in length, every ``invalid_every``-th lap is flagged invalid
    halfway through, and after ``restart_after_laps`` completed laps the
    session restarts from zero (0 disables either behaviour).
    """

    def __init__(
        self,
        lap_time_ms: int = 95_000,
        sector_count: int = 3,
        tick_ms: int = 100,
        invalid_every: int = 0,
        restart_after_laps: int = 0,
        track: str = "spa",
        car_model: str = "bmw_m4_gt3",
    ) -> None:
        self.lap_time_ms = lap_time_ms
        self.sector_count = max(1, sector_count)
        self.tick_ms = max(1, tick_ms)
        self.invalid_every = invalid_every
        self.restart_after_laps = restart_after_laps
        self.track = track
        self.car_model = car_model
        self._connected = False
        self._reset_session()

    def connect(self) -> None:
        self._connected = True

    def read(self) -> Snapshot:
        if not self._connected:
            raise RuntimeError("Source not connected.")

        lap_length = self._lap_length(self._completed_laps + 1)
        if self._lap_time >= lap_length:
            self._previous_sector_time = lap_length - self._sector_start
            self._previous_lap_time = lap_length
            if self._best_lap_time == 0 or lap_length < self._best_lap_time:
                self._best_lap_time = lap_length
            self._completed_laps += 1
            self._lap_time -= lap_length
            self._sector_index = 0
            self._sector_start = 0
            self._lap_valid = True
            if self.restart_after_laps > 0 and self._completed_laps >= self.restart_after_laps:
                self._reset_session()
            lap_length = self._lap_length(self._completed_laps + 1)

        sector_length = lap_length // self.sector_count
        sector_index = min(self.sector_count - 1, self._lap_time // sector_length)
        if sector_index != self._sector_index:
            self._previous_sector_time = self._lap_time - self._sector_start
            self._sector_start = self._lap_time
            self._sector_index = sector_index

        lap_number = self._completed_laps + 1
        if self.invalid_every > 0 and lap_number % self.invalid_every == 0 and self._lap_time > lap_length // 2:
            self._lap_valid = False

        snapshot = Snapshot(
            status=AccStatus.LIVE,
            session_type=AccSessionType.PRACTICE,
            track=self.track,
            car_model=self.car_model,
            sector_count=self.sector_count,
            number_of_cars=1,
            clock=43_200.0 + self._elapsed / 1000.0,
            completed_laps=self._completed_laps,
            best_lap_time=self._best_lap_time,
            previous_lap_time=self._previous_lap_time,
            current_lap_time=self._lap_time,
            current_sector_index=self._sector_index,
            previous_sector_time=self._previous_sector_time,
            is_valid=self._lap_valid,
        )
        self._lap_time += self.tick_ms
        self._elapsed += self.tick_ms
        return snapshot

    def close(self) -> None:
        self._connected = False

    def _lap_length(self, lap_number: int) -> int:
        return self.lap_time_ms + (lap_number % 3) * 350

    def _reset_session(self) -> None:
        self._elapsed = 0
        self._lap_time = 0
        self._completed_laps = 0
        self._sector_index = 0
        self._sector_start = 0
        self._previous_lap_time = 0
        self._previous_sector_time = 0
        self._best_lap_time = 0
        self._lap_valid = True
