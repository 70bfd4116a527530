from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Optional

from acc_session_recorder.config import RecorderConfig
from acc_session_recorder.core.event_bus import EventBus
from acc_session_recorder.core.event_queue import EventQueue
from acc_session_recorder.core.events import RecorderEvent
from acc_session_recorder.errors import SourceUnavailable
from acc_session_recorder.models.telemetry import Snapshot
from acc_session_recorder.polling.poller import Poller
from acc_session_recorder.providers.acc_shared_memory import ACCSharedMemorySource
from acc_session_recorder.providers.base import TelemetrySource
from acc_session_recorder.providers.mock_provider import MockTelemetrySource
from acc_session_recorder.providers.replay_provider import ReplayTelemetrySource
from acc_session_recorder.storage.lap_export import LapExporter
from acc_session_recorder.storage.persistence_worker import PersistenceWorker
from acc_session_recorder.storage.session_store import SessionStore, SQLiteSessionStore
from acc_session_recorder.storage.snapshot_recorder import SnapshotRecorder
from acc_session_recorder.tracking.session_tracker import SessionTracker


@dataclass
class RecorderApp:
    config: RecorderConfig
    source: Optional[TelemetrySource] = None
    store: Optional[SessionStore] = None
    tracker: Optional[SessionTracker] = None

    def __post_init__(self) -> None:
        self.config.validate()
        self.event_bus = EventBus()
        if self.source is None:
            self.source = self._build_source()
        if self.store is None:
            self.store = SQLiteSessionStore(self.config.db_path)
        if self.tracker is None:
            self.tracker = SessionTracker()
        self.queue = EventQueue(capacity=self.config.queue_capacity)
        self.worker = PersistenceWorker(
            queue=self.queue,
            store=self.store,
            max_attempts=self.config.persist_max_attempts,
            persist_live_updates=self.config.persist_live_updates,
            live_every_s=self.config.live_persist_every_s,
            exporter=LapExporter(self.config.output_dir),
            persist_parquet=self.config.persist_parquet,
        )
        self.snapshot_recorder = (
            SnapshotRecorder(self.config.output_dir) if self.config.record_snapshots else None
        )
        self.poller = Poller(
            source=self.source,
            on_snapshot=self._on_snapshot,
            interval_s=self.config.poll_interval_s,
            read_timeout_s=self.config.read_timeout_s,
            max_backoff_s=self.config.max_backoff_s,
        )
        self._register_handlers()

    def run(self, stop_event: threading.Event | None = None) -> None:
        stop_event = stop_event or threading.Event()
        self.worker.start()
        try:
            self.source.connect()
        except SourceUnavailable as exc:
            print(f"[RUN] waiting for telemetry: {exc}")
        try:
            self.poller.run(
                stop_event,
                tick_limit=self.config.tick_limit,
                should_stop=self._source_exhausted,
            )
        finally:
            self._shutdown()

    def _build_source(self) -> TelemetrySource:
        provider_mode = self.config.provider_mode.strip().lower()
        if provider_mode == "acc":
            return ACCSharedMemorySource()
        if provider_mode == "mock":
            return MockTelemetrySource(
                lap_time_ms=self.config.mock_lap_time_ms,
                tick_ms=self.config.mock_tick_ms,
            )
        if provider_mode == "replay":
            return ReplayTelemetrySource(
                replay_file=self.config.replay_file,
                speed=self.config.replay_speed,
            )
        raise RuntimeError(f"Invalid provider mode: {self.config.provider_mode}")

    def _register_handlers(self) -> None:
        self.event_bus.subscribe_all(self._enqueue)
        if self.snapshot_recorder is not None:
            self.event_bus.subscribe("session_ended", self._on_session_ended)

    def _on_snapshot(self, snapshot: Snapshot) -> None:
        events = self.tracker.update(snapshot)
        session = self.tracker.current_session
        if self.snapshot_recorder is not None and session is not None:
            self.snapshot_recorder.record(session.id, snapshot)
        self.event_bus.publish_all(events)

    def _enqueue(self, event: RecorderEvent) -> None:
        self.queue.put(event)

    def _on_session_ended(self, event: RecorderEvent) -> None:
        try:
            csv_path, parquet_path = self.snapshot_recorder.flush_session(
                event.session_id, persist_parquet=self.config.persist_parquet
            )
        except OSError as exc:
            print(f"[PERSIST][ERROR] snapshots of session {event.session_id} not saved: {exc}")
            return
        if csv_path is not None:
            print(f"[PERSIST] Snapshots CSV saved: {csv_path}")
        if parquet_path is not None:
            print(f"[PERSIST] Snapshots Parquet saved: {parquet_path}")

    def _source_exhausted(self) -> bool:
        return bool(getattr(self.source, "exhausted", False))

    def _shutdown(self) -> None:
        try:
            self.event_bus.publish_all(self.tracker.finish())
        finally:
            self.worker.stop()
            self.source.close()
        if self.queue.dropped_live or self.queue.overflow:
            print(
                f"[RUN] queue dropped {self.queue.dropped_live} live updates, "
                f"{self.queue.overflow} durable events over capacity"
            )
        print(
            f"[RUN] stopped ticks={self.poller.ticks} snapshots={self.poller.snapshots} "
            f"unavailable={self.poller.unavailable} malformed={self.poller.malformed} "
            f"upserts={self.worker.upserts} persist_errors={len(self.worker.errors)}"
        )
