"""Telemetry sources."""

from acc_session_recorder.providers.acc_shared_memory import ACCSharedMemorySource
from acc_session_recorder.providers.base import TelemetrySource
from acc_session_recorder.providers.mock_provider import MockTelemetrySource
from acc_session_recorder.providers.replay_provider import ReplayTelemetrySource

__all__ = [
    "ACCSharedMemorySource",
    "MockTelemetrySource",
    "ReplayTelemetrySource",
    "TelemetrySource",
]
