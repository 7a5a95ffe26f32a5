import threading
from typing import TYPE_CHECKING, List

from .base import EventSink

if TYPE_CHECKING:
    from ..types import SecurityEvent


class MemorySink(EventSink):
    """Keeps events in memory, newest last. Intended for tests and shells."""

    def __init__(self, max_events: int = 1000):
        self.max_events = max_events
        self.events: List["SecurityEvent"] = []
        self._lock = threading.Lock()

    def write(self, event: "SecurityEvent") -> None:
        with self._lock:
            self.events.append(event)
            if len(self.events) > self.max_events:
                del self.events[: len(self.events) - self.max_events]

    def of_type(self, event_type: str) -> List["SecurityEvent"]:
        with self._lock:
            return [event for event in self.events if str(event.event_type) == str(event_type)]

    def clear(self) -> None:
        with self._lock:
            self.events.clear()
