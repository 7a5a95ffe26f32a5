import copy
import logging
import queue
import threading
from typing import Any, Dict, List, Optional, Union

from .sinks.base import EventSink
from .types import (
    DEFAULT_OUTCOME,
    DEFAULT_SEVERITY,
    EventType,
    Outcome,
    SecurityEvent,
    Severity,
    normalize_event_type,
)

logger = logging.getLogger(__name__)

_STOP = object()


class EventBus:
    """
    Fan-out of security events to pluggable sinks.

    Recording is fire-and-forget: a failing sink is logged and skipped, and
    ``record`` never raises into the request. With ``async_processing`` a
    worker thread drains a bounded queue after ``start()``; until then, or
    without it, events are written inline.
    """

    def __init__(self, async_processing: bool = False, max_queue_size: int = 10000):
        self._sinks: List[EventSink] = []
        self._queue: queue.Queue = queue.Queue(maxsize=max_queue_size)
        self._async = async_processing
        self._worker: Optional[threading.Thread] = None
        self._redactor: Optional["EventRedactor"] = None

    @property
    def sinks(self) -> List[EventSink]:
        return list(self._sinks)

    def add_sink(self, sink: EventSink) -> "EventBus":
        self._sinks.append(sink)
        return self

    def set_redactor(self, redactor: "EventRedactor") -> "EventBus":
        self._redactor = redactor
        return self

    def start(self) -> None:
        if self._async and self._worker is None:
            self._worker = threading.Thread(
                target=self._drain, name="query-shield-events", daemon=True
            )
            self._worker.start()
            logger.info("Security event bus processing asynchronously")

    def stop(self) -> None:
        """Deliver queued events, then flush and close every sink."""
        worker, self._worker = self._worker, None
        if worker is not None:
            self._queue.put(_STOP)
            worker.join(timeout=5.0)
        for sink in self._sinks:
            try:
                sink.flush()
                sink.close()
            except Exception as e:
                logger.error(f"Sink {sink.__class__.__name__} failed to close: {e}")

    def record(
        self,
        event_type: Union[str, EventType],
        message: str,
        context: Optional[Dict[str, Any]] = None,
        *,
        client_key: Optional[str] = None,
        severity: Optional[Severity] = None,
        outcome: Optional[Outcome] = None,
    ) -> None:
        """Build and emit a security event; never raises."""
        try:
            type_value = normalize_event_type(event_type)
            event = SecurityEvent(
                event_type=type_value,
                message=message,
                client_key=client_key,
                severity=severity or DEFAULT_SEVERITY.get(type_value, Severity.INFO),
                outcome=outcome or DEFAULT_OUTCOME.get(type_value, Outcome.SUCCESS),
                context=dict(context or {}),
            )
            self.emit(event)
        except Exception as e:
            logger.error(f"Unable to record security event {event_type}: {e}")

    def emit(self, event: SecurityEvent) -> None:
        if self._redactor:
            event = self._redactor.redact(event)

        if self._worker is None:
            self._dispatch(event)
            return
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            logger.warning("Security event queue full, dropping %s", event.event_type)

    def _drain(self) -> None:
        while True:
            event = self._queue.get()
            if event is _STOP:
                break
            self._dispatch(event)

    def _dispatch(self, event: SecurityEvent) -> None:
        for sink in self._sinks:
            try:
                sink.write(event)
            except Exception as e:
                logger.error(f"Sink {sink.__class__.__name__} failed: {e}")


class EventRedactor:
    """Masks sensitive context keys before events reach any sink."""

    DEFAULT_FIELDS = (
        "password",
        "token",
        "secret",
        "key",
        "credential",
        "authorization",
        "cookie",
        "variables",
    )

    def __init__(self, fields: Optional[List[str]] = None, mask: str = "***REDACTED***"):
        self.fields = {f.lower() for f in (fields or self.DEFAULT_FIELDS)}
        self.mask = mask

    def redact(self, event: SecurityEvent) -> SecurityEvent:
        """Return a redacted copy; ``event`` itself is left untouched."""
        event = copy.deepcopy(event)
        event.context = self._redact(event.context)
        return event

    def _redact(self, value: Any) -> Any:
        if isinstance(value, dict):
            return {
                key: self.mask if str(key).lower() in self.fields else self._redact(item)
                for key, item in value.items()
            }
        if isinstance(value, list):
            return [self._redact(item) for item in value]
        return value


def create_event_bus(source: Any = None) -> EventBus:
    """
    Create an event bus from Query Shield settings.

    Args:
        source: Configuration source; defaults to Django settings

    Returns:
        A started EventBus with the sinks named in ``event_sinks`` plus a
        webhook sink when ``event_webhook_url`` is set
    """
    from ...config_proxy import SettingsConfigSource
    from .sinks import LoggingSink, SentrySink, WebhookSink

    source = source if source is not None else SettingsConfigSource()
    bus = EventBus(async_processing=bool(source.get("event_async", False)))
    bus.set_redactor(EventRedactor(fields=source.get("event_redaction_fields")))

    sink_names = source.get("event_sinks", ["logging"]) or []
    if "logging" in sink_names:
        bus.add_sink(LoggingSink())
    if "sentry" in sink_names:
        bus.add_sink(SentrySink())

    webhook_url = source.get("event_webhook_url")
    if webhook_url:
        bus.add_sink(
            WebhookSink(
                url=webhook_url,
                min_severity=source.get("event_webhook_min_severity", "warning"),
            )
        )

    bus.start()
    return bus
