from __future__ import annotations

from collections import defaultdict
from typing import Callable, DefaultDict, Dict, List

from acc_session_recorder.core.events import EVENT_NAMES, RecorderEvent

EventHandler = Callable[[RecorderEvent], None]


class EventBus:
    """In-process pub/sub for tracker events. Handlers run on the publishing thread."""

    def __init__(self) -> None:
        self._handlers: DefaultDict[str, List[EventHandler]] = defaultdict(list)

    def subscribe(self, event_name: str, handler: EventHandler) -> None:
        if event_name not in EVENT_NAMES:
            raise ValueError(f"Unknown event name: {event_name}")
        self._handlers[event_name].append(handler)

    def subscribe_all(self, handler: EventHandler) -> None:
        for event_name in EVENT_NAMES:
            self._handlers[event_name].append(handler)

    def publish(self, event: RecorderEvent) -> None:
        for handler in self._handlers[event.name]:
            handler(event)

    def publish_all(self, events: List[RecorderEvent]) -> None:
        for event in events:
            self.publish(event)

    def subscriber_count(self) -> Dict[str, int]:
        return {event_name: len(handlers) for event_name, handlers in self._handlers.items()}
