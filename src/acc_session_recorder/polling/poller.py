from __future__ import annotations

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Callable, Optional

from acc_session_recorder.errors import MalformedSnapshot, SourceUnavailable
from acc_session_recorder.models.telemetry import Snapshot
from acc_session_recorder.providers.base import TelemetrySource

SnapshotHandler = Callable[[Snapshot], None]


@dataclass(slots=True)
class Backoff:
    """Bounded exponential backoff: ``base_s * factor**n`` capped at ``max_s``."""

    base_s: float
    max_s: float
    factor: float = 2.0
    attempts: int = 0

    def next_delay(self) -> float:
        delay = min(self.max_s, self.base_s * (self.factor ** self.attempts))
        self.attempts += 1
        return max(self.base_s, delay)

    def reset(self) -> None:
        self.attempts = 0


class Poller:
    """Samples a telemetry source at a fixed cadence and hands snapshots on.

    A missing feed (or a read that outlives ``read_timeout_s``) backs off
    exponentially; an undecodable snapshot only costs its tick. Neither ever
    ends the loop.
    """

    def __init__(
        self,
        source: TelemetrySource,
        on_snapshot: SnapshotHandler,
        interval_s: float,
        read_timeout_s: float = 0.5,
        max_backoff_s: float = 5.0,
        unavailable_log_every_s: float = 5.0,
    ) -> None:
        if interval_s <= 0.0:
            raise ValueError("interval_s must be > 0")
        self.source = source
        self.on_snapshot = on_snapshot
        self.interval_s = interval_s
        self.read_timeout_s = read_timeout_s
        self.backoff = Backoff(base_s=interval_s, max_s=max(interval_s, max_backoff_s))
        self.unavailable_log_every_s = unavailable_log_every_s
        self.ticks = 0
        self.snapshots = 0
        self.unavailable = 0
        self.malformed = 0
        self._next_delay = interval_s
        self._last_unavailable_log_at = 0.0
        self._executor: Optional[ThreadPoolExecutor] = None
        self._pending: Optional[Future] = None

    def poll_once(self) -> Optional[Snapshot]:
        """Run a single tick. Returns the snapshot handed on, or None."""
        self.ticks += 1
        try:
            snapshot = self._read_bounded()
        except SourceUnavailable as exc:
            self.unavailable += 1
            self._next_delay = self.backoff.next_delay()
            self._log_unavailable(exc)
            return None
        except MalformedSnapshot as exc:
            self.malformed += 1
            self._next_delay = self.interval_s
            print(f"[POLL] malformed snapshot discarded (tick={self.ticks}): {exc}")
            return None

        if self.unavailable and self.backoff.attempts:
            print(f"[POLL] telemetry source available again after {self.backoff.attempts} failed reads")
        self.backoff.reset()
        self._next_delay = self.interval_s
        self.snapshots += 1
        self.on_snapshot(snapshot)
        return snapshot

    def run(
        self,
        stop_event: threading.Event,
        tick_limit: int = 0,
        should_stop: Callable[[], bool] | None = None,
    ) -> None:
        try:
            while not stop_event.is_set():
                started = time.monotonic()
                self.poll_once()
                if tick_limit > 0 and self.ticks >= tick_limit:
                    print(f"[POLL] tick_limit reached ({tick_limit}).")
                    break
                if should_stop is not None and should_stop():
                    break
                elapsed = time.monotonic() - started
                stop_event.wait(max(0.0, self._next_delay - elapsed))
        finally:
            self.shutdown()

    def shutdown(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
            self._pending = None

    def _read_bounded(self) -> Snapshot:
        if self.read_timeout_s <= 0.0:
            return self.source.read()

        if self._pending is not None:
            if not self._pending.done():
                raise SourceUnavailable("previous telemetry read still blocked")
            self._pending = None

        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="telemetry-read")
        future = self._executor.submit(self.source.read)
        try:
            return future.result(timeout=self.read_timeout_s)
        except FutureTimeoutError as exc:
            self._pending = future
            raise SourceUnavailable(f"telemetry read timed out after {self.read_timeout_s:.2f}s") from exc

    def _log_unavailable(self, exc: SourceUnavailable) -> None:
        now = time.monotonic()
        if self.unavailable == 1 or now - self._last_unavailable_log_at >= self.unavailable_log_every_s:
            print(
                f"[POLL] telemetry source unavailable ({exc}); "
                f"retrying in {self._next_delay:.2f}s (failures={self.unavailable})"
            )
            self._last_unavailable_log_at = now
