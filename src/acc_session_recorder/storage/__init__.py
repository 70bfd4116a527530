"""Data persistence adapters."""

from acc_session_recorder.storage.lap_export import LapExporter
from acc_session_recorder.storage.persistence_worker import PersistenceErrorReport, PersistenceWorker
from acc_session_recorder.storage.session_store import SessionStore, SQLiteSessionStore
from acc_session_recorder.storage.snapshot_recorder import SnapshotRecorder

__all__ = [
    "LapExporter",
    "PersistenceErrorReport",
    "PersistenceWorker",
    "SQLiteSessionStore",
    "SessionStore",
    "SnapshotRecorder",
]
