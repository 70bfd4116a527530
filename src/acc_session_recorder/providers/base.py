from __future__ import annotations

from abc import ABC, abstractmethod

from acc_session_recorder.models.telemetry import Snapshot


class TelemetrySource(ABC):
    """Snapshot source abstraction (ACC shared memory, mock, replay, etc).

    ``read`` returns one snapshot per call, or raises ``SourceUnavailable``
    when the feed is not there and ``MalformedSnapshot`` when it cannot be
    decoded.
    """

    @abstractmethod
    def connect(self) -> None:
        pass

    @abstractmethod
    def read(self) -> Snapshot:
        pass

    @abstractmethod
    def close(self) -> None:
        pass
