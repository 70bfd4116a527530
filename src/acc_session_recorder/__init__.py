"""Records ACC sessions, laps and sectors from live shared-memory telemetry."""

__version__ = "0.1.0"
