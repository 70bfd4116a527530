from __future__ import annotations

import os
import signal
import sys
import threading
from pathlib import Path
from typing import Callable, Mapping, TypeVar

from acc_session_recorder.app import RecorderApp
from acc_session_recorder.config import RecorderConfig
from acc_session_recorder.errors import ConfigError
from acc_session_recorder.runtime_logging import configure_runtime_log, restore_runtime_streams

T = TypeVar("T")


def _env(environ: Mapping[str, str], name: str, default: str) -> str:
    return environ.get(name, default).strip() or default


def _parse(environ: Mapping[str, str], name: str, default: str, convert: Callable[[str], T]) -> T:
    raw = _env(environ, name, default)
    try:
        return convert(raw)
    except ValueError as exc:
        raise ConfigError(f"{name}={raw!r} is not a valid value") from exc


def load_config(environ: Mapping[str, str]) -> RecorderConfig:
    """Build a validated ``RecorderConfig`` from ``ASR_*`` variables."""
    config = RecorderConfig(
        provider_mode=_env(environ, "ASR_PROVIDER", "acc").lower(),
        poll_hz=_parse(environ, "ASR_POLL_HZ", "10", float),
        read_timeout_s=_parse(environ, "ASR_READ_TIMEOUT_S", "0.5", float),
        max_backoff_s=_parse(environ, "ASR_MAX_BACKOFF_S", "5.0", float),
        replay_file=environ.get("ASR_REPLAY_FILE", "").strip(),
        replay_speed=_parse(environ, "ASR_REPLAY_SPEED", "0", float),
        tick_limit=_parse(environ, "ASR_TICK_LIMIT", "0", int),
        db_path=Path(_env(environ, "ASR_DB", "data/sessions.sqlite")),
        queue_capacity=_parse(environ, "ASR_QUEUE_CAPACITY", "512", int),
        persist_live_updates=_env(environ, "ASR_PERSIST_LIVE", "1") != "0",
        live_persist_every_s=_parse(environ, "ASR_LIVE_PERSIST_EVERY_S", "5.0", float),
        persist_max_attempts=_parse(environ, "ASR_PERSIST_MAX_ATTEMPTS", "5", int),
        persist_parquet=_env(environ, "ASR_PERSIST_PARQUET", "1") != "0",
        record_snapshots=_env(environ, "ASR_RECORD_SNAPSHOTS", "0") != "0",
        output_dir=Path(_env(environ, "ASR_OUTPUT_DIR", "data/session_output")),
    )
    return config.validate()


def _install_stop_handlers(stop_event: threading.Event) -> None:
    def _handle(signum: int, _frame: object) -> None:
        print(f"[RUN] signal {signum} received, finishing session.")
        stop_event.set()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)


def main() -> None:
    log_file = Path(os.getenv("ASR_LOG_FILE", "logs/recorder.log").strip() or "logs/recorder.log")
    log_path = configure_runtime_log(log_file)
    try:
        _run(log_path)
    finally:
        restore_runtime_streams()


def _run(log_path: Path) -> None:
    try:
        config = load_config(os.environ)
    except ConfigError as exc:
        print(f"[BOOT] invalid configuration: {exc}", file=sys.stderr)
        raise SystemExit(2) from exc

    print(
        f"[BOOT] provider={config.provider_mode} poll_hz={config.poll_hz:g} "
        f"read_timeout_s={config.read_timeout_s:.2f} max_backoff_s={config.max_backoff_s:.1f} "
        f"tick_limit={config.tick_limit} db={config.db_path} queue={config.queue_capacity} "
        f"persist_live={config.persist_live_updates} record_snapshots={config.record_snapshots} "
        f"log_file={log_path}"
    )
    stop_event = threading.Event()
    _install_stop_handlers(stop_event)
    RecorderApp(config).run(stop_event)


if __name__ == "__main__":
    main()
