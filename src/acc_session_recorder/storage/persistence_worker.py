from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass
from threading import Thread
from typing import Callable, Deque, Dict, Optional

from acc_session_recorder.core.event_queue import EventQueue
from acc_session_recorder.core.events import (
    LapFinalized,
    LiveUpdate,
    RecorderEvent,
    SectorFinalized,
    SessionEnded,
    SessionStarted,
)
from acc_session_recorder.errors import PersistenceFailure
from acc_session_recorder.models.session import Session
from acc_session_recorder.polling.poller import Backoff
from acc_session_recorder.storage.lap_export import LapExporter
from acc_session_recorder.storage.session_store import SessionStore


@dataclass(slots=True)
class PersistenceErrorReport:
    event_name: str
    session_id: str
    attempts: int
    message: str
    at: float


class PersistenceWorker:
    """Drains tracker events from the queue into a session store on its own thread.

    Durable events are retried with exponential backoff up to
    ``max_attempts``. A session that still could not be stored is reported on
    ``errors`` and parked; it is stored again after the next successful
    upsert and once more when the queue is drained, so a storage outage never
    loses recorded state. Live updates are stored at most every
    ``live_every_s`` per session and are not retried, since the next one
    supersedes them.
    """

    def __init__(
        self,
        queue: EventQueue,
        store: SessionStore,
        max_attempts: int = 5,
        retry_base_s: float = 0.1,
        retry_max_s: float = 2.0,
        persist_live_updates: bool = True,
        live_every_s: float = 5.0,
        exporter: LapExporter | None = None,
        persist_parquet: bool = True,
        on_error: Callable[[PersistenceErrorReport], None] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.queue = queue
        self.store = store
        self.max_attempts = max(1, max_attempts)
        self.retry_base_s = retry_base_s
        self.retry_max_s = retry_max_s
        self.persist_live_updates = persist_live_updates
        self.live_every_s = live_every_s
        self.exporter = exporter
        self.persist_parquet = persist_parquet
        self.on_error = on_error
        self._sleep = sleep
        self.errors: Deque[PersistenceErrorReport] = deque(maxlen=100)
        self.upserts = 0
        self.live_upserts = 0
        self.failures = 0
        self._parked: Dict[str, Session] = {}
        self._last_live_at: Dict[str, float] = {}
        self._thread: Optional[Thread] = None

    @property
    def parked_session_ids(self) -> list[str]:
        return list(self._parked.keys())

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = Thread(target=self.run, name="persistence-worker", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        """Close the queue and wait until every queued event was handled."""
        self.queue.close()
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                print(f"[PERSIST][ERROR] worker still draining after {timeout}s ({len(self.queue)} events queued)")
                return
            self._thread = None

    def run(self) -> None:
        while True:
            event = self.queue.get(timeout=0.25)
            if event is None:
                if self.queue.drained():
                    break
                continue
            try:
                self.handle(event)
            except Exception as exc:  # noqa: BLE001
                self.failures += 1
                if event.durable:
                    self._parked[event.session_id] = event.session
                self._report(event.name, event.session_id, 1, f"{type(exc).__name__}: {exc}")
        try:
            self._retry_parked()
        except Exception as exc:  # noqa: BLE001
            print(f"[PERSIST][ERROR] final store of parked sessions failed: {type(exc).__name__}: {exc}")
        if self._parked:
            print(f"[PERSIST][ERROR] {len(self._parked)} session(s) could not be stored: {self.parked_session_ids}")

    def handle(self, event: RecorderEvent) -> None:
        match event:
            case LiveUpdate():
                self._persist_live(event)
            case SessionStarted() | SectorFinalized() | LapFinalized():
                self._persist_durable(event)
            case SessionEnded():
                if self._persist_durable(event):
                    self._last_live_at.pop(event.session_id, None)
                self._export(event.session)
            case _:
                raise TypeError(f"Unhandled recorder event: {type(event).__name__}")

    def _persist_durable(self, event: RecorderEvent) -> bool:
        backoff = Backoff(base_s=self.retry_base_s, max_s=self.retry_max_s)
        last_error: PersistenceFailure | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                self.store.upsert(event.session)
            except PersistenceFailure as exc:
                last_error = exc
                self.failures += 1
                if attempt < self.max_attempts:
                    delay = backoff.next_delay()
                    print(f"[PERSIST] {event.name} attempt {attempt} failed ({exc}); retrying in {delay:.2f}s")
                    self._sleep(delay)
                continue
            self.upserts += 1
            self._parked.pop(event.session_id, None)
            self._retry_parked()
            return True

        self._parked[event.session_id] = event.session
        self._report(event.name, event.session_id, self.max_attempts, str(last_error))
        return False

    def _report(self, event_name: str, session_id: str, attempts: int, message: str) -> None:
        report = PersistenceErrorReport(event_name, session_id, attempts, message, at=time.time())
        self.errors.append(report)
        print(f"[PERSIST][ERROR] giving up on {event_name} for session {session_id} after {attempts} attempt(s): {message}")
        if self.on_error is not None:
            self.on_error(report)

    def _persist_live(self, event: LiveUpdate) -> None:
        if not self.persist_live_updates:
            return
        now = time.monotonic()
        last = self._last_live_at.get(event.session_id)
        if last is not None and now - last < self.live_every_s:
            return
        self._last_live_at[event.session_id] = now
        try:
            self.store.upsert(event.session)
        except PersistenceFailure as exc:
            self.failures += 1
            print(f"[PERSIST] live update for session {event.session_id} not stored: {exc}")
            return
        self.live_upserts += 1
        self._parked.pop(event.session_id, None)

    def _retry_parked(self) -> None:
        for session_id, session in list(self._parked.items()):
            try:
                self.store.upsert(session)
            except PersistenceFailure:
                return
            self.upserts += 1
            del self._parked[session_id]
            print(f"[PERSIST] parked session {session_id} stored")

    def _export(self, session: Session) -> None:
        if self.exporter is None:
            return
        try:
            csv_path = self.exporter.save_csv(session)
            print(f"[EXPORT] Laps CSV saved: {csv_path}")
            if self.persist_parquet:
                parquet_path = self.exporter.save_parquet(session)
                print(f"[EXPORT] Laps Parquet saved: {parquet_path}")
        except OSError as exc:
            print(f"[EXPORT] failed to export session {session.id}: {exc}")
