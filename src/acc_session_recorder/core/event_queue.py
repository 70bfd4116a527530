from __future__ import annotations

import threading
from collections import deque
from typing import Deque, Optional

from acc_session_recorder.core.events import RecorderEvent


class EventQueue:
    """Bounded FIFO between the tracker loop and the persistence worker.

    ``put`` never blocks. When the queue is full the oldest queued
    ``LiveUpdate`` is dropped to make room; an incoming live update is dropped
    if no older one can be. Durable events are always accepted, so for them
    the capacity is a soft bound and every excess is counted in ``overflow``.
    """

    def __init__(self, capacity: int = 512) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self._items: Deque[RecorderEvent] = deque()
        self._cond = threading.Condition()
        self._closed = False
        self.dropped_live = 0
        self.overflow = 0

    def __len__(self) -> int:
        with self._cond:
            return len(self._items)

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    def put(self, event: RecorderEvent) -> bool:
        """Enqueue ``event``. Returns False when it was dropped."""
        with self._cond:
            if self._closed:
                raise RuntimeError("EventQueue is closed.")
            if len(self._items) >= self.capacity:
                if not self._drop_oldest_live():
                    if not event.durable:
                        self.dropped_live += 1
                        return False
                    self.overflow += 1
            self._items.append(event)
            self._cond.notify()
            return True

    def get(self, timeout: Optional[float] = None) -> Optional[RecorderEvent]:
        """Pop the next event, waiting up to ``timeout``.

        Returns None on timeout, or once the queue is closed and empty.
        """
        with self._cond:
            if not self._items and not self._closed:
                self._cond.wait(timeout)
            if self._items:
                return self._items.popleft()
            return None

    def close(self) -> None:
        """Stop accepting events; queued events remain available to ``get``."""
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    def drained(self) -> bool:
        with self._cond:
            return self._closed and not self._items

    def _drop_oldest_live(self) -> bool:
        for index, queued in enumerate(self._items):
            if not queued.durable:
                del self._items[index]
                self.dropped_live += 1
                return True
        return False
