"""
Security events emitted by the query guard.
"""

from .bus import EventBus, EventRedactor, create_event_bus
from .sinks import EventSink, LoggingSink, MemorySink, SentrySink, WebhookSink
from .types import EventType, Outcome, SecurityEvent, Severity

__all__ = [
    "EventBus",
    "EventRedactor",
    "EventSink",
    "EventType",
    "LoggingSink",
    "MemorySink",
    "Outcome",
    "SecurityEvent",
    "SentrySink",
    "Severity",
    "WebhookSink",
    "create_event_bus",
]
