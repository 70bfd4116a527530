from __future__ import annotations

import mmap
import struct
import sys

from acc_session_recorder.errors import MalformedSnapshot, SourceUnavailable
from acc_session_recorder.models.telemetry import AccStatus, Snapshot
from acc_session_recorder.providers.base import TelemetrySource

ACC_GRAPHICS_MAP_NAME = "Local\\acpmf_graphics"
ACC_STATIC_MAP_NAME = "Local\\acpmf_static"
ACC_GRAPHICS_MAP_SIZE = 1588
ACC_STATIC_MAP_SIZE = 784

# Offsets from the official ACC shared memory layout (SPageFileGraphic).
_G_PACKET_ID = 0
_G_STATUS = 4
_G_SESSION = 8
_G_COMPLETED_LAPS = 132
_G_CURRENT_TIME = 140
_G_LAST_TIME = 144
_G_BEST_TIME = 148
_G_IS_IN_PIT = 160
_G_CURRENT_SECTOR_INDEX = 164
_G_LAST_SECTOR_TIME = 168
_G_IS_IN_PIT_LANE = 1236
_G_IS_VALID_LAP = 1408
_G_CLOCK = 1488

# SPageFileStatic.
_S_NUM_CARS = 64
_S_CAR_MODEL = 68
_S_TRACK = 134
_S_SECTOR_COUNT = 400
_WCHAR_33 = 33

_I32 = struct.Struct("<i")
_F32 = struct.Struct("<f")


def _read_i32(buffer: bytes, offset: int) -> int:
    return _I32.unpack_from(buffer, offset)[0]


def _read_f32(buffer: bytes, offset: int) -> float:
    return _F32.unpack_from(buffer, offset)[0]


def _read_utf16(buffer: bytes, offset: int, wchar_count: int) -> str:
    raw = buffer[offset : offset + (wchar_count * 2)]
    text = raw.decode("utf-16-le", errors="ignore")
    return text.split("\x00", 1)[0].strip()


def _check_size(name: str, raw: bytes, expected: int) -> None:
    if len(raw) < expected:
        raise MalformedSnapshot(
            f"{name} buffer too short: {len(raw)} bytes, expected {expected}",
            expected_size=expected,
            actual_size=len(raw),
        )


def decode_snapshot(graphics_raw: bytes, static_raw: bytes) -> Snapshot:
    """Decode one snapshot field by field from raw graphics/static pages.

    Buffer lengths are checked against the layout sizes before any field is
    read; a short buffer raises ``MalformedSnapshot``.
    """
    _check_size("graphics", graphics_raw, ACC_GRAPHICS_MAP_SIZE)
    _check_size("static", static_raw, ACC_STATIC_MAP_SIZE)

    try:
        snapshot = Snapshot(
            status=_read_i32(graphics_raw, _G_STATUS),
            session_type=_read_i32(graphics_raw, _G_SESSION),
            track=_read_utf16(static_raw, _S_TRACK, _WCHAR_33),
            car_model=_read_utf16(static_raw, _S_CAR_MODEL, _WCHAR_33),
            sector_count=_read_i32(static_raw, _S_SECTOR_COUNT),
            number_of_cars=_read_i32(static_raw, _S_NUM_CARS),
            clock=_read_f32(graphics_raw, _G_CLOCK),
            completed_laps=_read_i32(graphics_raw, _G_COMPLETED_LAPS),
            best_lap_time=_read_i32(graphics_raw, _G_BEST_TIME),
            previous_lap_time=_read_i32(graphics_raw, _G_LAST_TIME),
            current_lap_time=_read_i32(graphics_raw, _G_CURRENT_TIME),
            current_sector_index=_read_i32(graphics_raw, _G_CURRENT_SECTOR_INDEX),
            previous_sector_time=_read_i32(graphics_raw, _G_LAST_SECTOR_TIME),
            is_valid=_read_i32(graphics_raw, _G_IS_VALID_LAP) != 0,
            is_in_pit_lane=_read_i32(graphics_raw, _G_IS_IN_PIT_LANE) != 0,
            is_in_pit=_read_i32(graphics_raw, _G_IS_IN_PIT) != 0,
        )
    except struct.error as exc:
        raise MalformedSnapshot(f"unreadable telemetry buffer: {exc}") from exc

    if snapshot.completed_laps < 0 or snapshot.sector_count < 0 or snapshot.current_sector_index < 0:
        raise MalformedSnapshot(
            "implausible counters "
            f"(laps={snapshot.completed_laps}, sectors={snapshot.sector_count}, "
            f"sector_index={snapshot.current_sector_index})"
        )
    return snapshot


class ACCSharedMemorySource(TelemetrySource):
    """Reads live telemetry from ACC shared memory maps on Windows."""

    def __init__(self) -> None:
        self._graphics_map: mmap.mmap | None = None
        self._static_map: mmap.mmap | None = None
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    def connect(self) -> None:
        if sys.platform != "win32":
            raise SourceUnavailable("ACC shared memory is only available on Windows.")
        try:
            self._graphics_map = mmap.mmap(
                -1,
                ACC_GRAPHICS_MAP_SIZE,
                tagname=ACC_GRAPHICS_MAP_NAME,
                access=mmap.ACCESS_READ,
            )
            self._static_map = mmap.mmap(
                -1,
                ACC_STATIC_MAP_SIZE,
                tagname=ACC_STATIC_MAP_NAME,
                access=mmap.ACCESS_READ,
            )
        except OSError as exc:
            self.close()
            raise SourceUnavailable(
                "Could not open ACC shared memory. Make sure ACC is running with a session loaded."
            ) from exc
        self._connected = True

    def read(self) -> Snapshot:
        if not self._connected:
            self.connect()
        if self._graphics_map is None or self._static_map is None:
            raise SourceUnavailable("ACC shared memory not mapped.")

        try:
            graphics_raw = self._graphics_map[:]
            static_raw = self._static_map[:]
        except (OSError, ValueError) as exc:
            self.close()
            raise SourceUnavailable(f"ACC shared memory read failed: {exc}") from exc

        snapshot = decode_snapshot(graphics_raw, static_raw)
        # A page that was never written by the game reads as all zeros.
        if snapshot.status == AccStatus.OFF and _read_i32(graphics_raw, _G_PACKET_ID) == 0:
            raise SourceUnavailable("ACC is not running.")
        return snapshot

    def close(self) -> None:
        if self._graphics_map is not None:
            self._graphics_map.close()
            self._graphics_map = None
        if self._static_map is not None:
            self._static_map.close()
            self._static_map = None
        self._connected = False
