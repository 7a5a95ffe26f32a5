from .audit_log import LoggingSink
from .base import EventSink
from .memory import MemorySink
from .sentry import SentrySink
from .webhook import WebhookSink

__all__ = ["EventSink", "LoggingSink", "MemorySink", "SentrySink", "WebhookSink"]
