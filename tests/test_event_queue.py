from __future__ import annotations

import datetime as dt
import threading

import pytest

from acc_session_recorder.core.event_bus import EventBus
from acc_session_recorder.core.event_queue import EventQueue
from acc_session_recorder.core.events import (
    EVENT_NAMES,
    LapFinalized,
    LiveUpdate,
    SessionEnded,
    SessionStarted,
)
from acc_session_recorder.models.session import Session


def _session(session_id: str = "s1") -> Session:
    return Session(
        id=session_id,
        start_time=dt.datetime(2024, 5, 1, tzinfo=dt.timezone.utc),
        session_type="PRACTICE",
        track="monza",
        car_model="ferrari_296_gt3",
        number_of_sectors=3,
    )


def _live(tag: int) -> LiveUpdate:
    return LiveUpdate(session_id="s1", session=_session(), lap_number=tag)


def _lap(tag: int) -> LapFinalized:
    return LapFinalized(session_id="s1", session=_session(), lap_number=tag)


class TestEventQueue:
    def test_rejects_non_positive_capacity(self):
        with pytest.raises(ValueError):
            EventQueue(capacity=0)

    def test_fifo_order(self):
        queue = EventQueue(capacity=4)
        queue.put(_lap(1))
        queue.put(_live(2))
        queue.put(_lap(3))
        assert [queue.get(timeout=0).lap_number for _ in range(3)] == [1, 2, 3]

    def test_full_queue_drops_oldest_live_update(self):
        queue = EventQueue(capacity=3)
        queue.put(_live(1))
        queue.put(_lap(2))
        queue.put(_live(3))

        assert queue.put(_lap(4)) is True

        assert queue.dropped_live == 1
        assert [queue.get(timeout=0).lap_number for _ in range(len(queue))] == [2, 3, 4]

    def test_incoming_live_update_dropped_when_only_durable_queued(self):
        queue = EventQueue(capacity=2)
        queue.put(_lap(1))
        queue.put(_lap(2))

        assert queue.put(_live(3)) is False
        assert queue.dropped_live == 1
        assert len(queue) == 2

    def test_durable_events_are_never_dropped(self):
        queue = EventQueue(capacity=2)
        for tag in range(5):
            assert queue.put(_lap(tag)) is True
        assert len(queue) == 5
        assert queue.overflow == 3
        assert queue.dropped_live == 0

    def test_get_times_out_with_none(self):
        assert EventQueue().get(timeout=0.01) is None

    def test_close_keeps_queued_events_then_drains(self):
        queue = EventQueue()
        queue.put(_lap(1))
        queue.close()

        assert queue.closed is True
        assert queue.drained() is False
        assert queue.get(timeout=0).lap_number == 1
        assert queue.get(timeout=1.0) is None
        assert queue.drained() is True
        with pytest.raises(RuntimeError):
            queue.put(_lap(2))

    def test_close_wakes_blocked_consumer(self):
        queue = EventQueue()
        result = []
        consumer = threading.Thread(target=lambda: result.append(queue.get(timeout=5.0)))
        consumer.start()
        queue.close()
        consumer.join(timeout=2.0)
        assert not consumer.is_alive()
        assert result == [None]


class TestEventBus:
    def test_subscribe_routes_by_event_name(self):
        bus = EventBus()
        seen = []
        bus.subscribe("session_started", seen.append)
        bus.publish(SessionStarted(session_id="s1", session=_session()))
        bus.publish(SessionEnded(session_id="s1", session=_session()))
        assert [event.name for event in seen] == ["session_started"]

    def test_subscribe_all_sees_everything_in_order(self):
        bus = EventBus()
        seen = []
        bus.subscribe_all(seen.append)
        bus.publish_all([SessionStarted(session_id="s1", session=_session()), _live(1), _lap(1)])
        assert [event.name for event in seen] == ["session_started", "live_update", "lap_finalized"]
        assert set(bus.subscriber_count()) == set(EVENT_NAMES)

    def test_unknown_event_name_is_rejected(self):
        with pytest.raises(ValueError):
            EventBus().subscribe("pit_stop", lambda event: None)

    def test_only_live_updates_are_not_durable(self):
        assert _live(1).durable is False
        assert _lap(1).durable is True
        assert SessionEnded(session_id="s1", session=_session()).durable is True
