from typing import TYPE_CHECKING

import sentry_sdk

from .base import EventSink

if TYPE_CHECKING:
    from ..types import SecurityEvent


class SentrySink(EventSink):
    """
    Forwards events to Sentry.

    Every event becomes a breadcrumb; events at or above ``min_severity`` are
    also captured as messages tagged with the event type.
    """

    def __init__(self, min_severity: str = "error"):
        self.min_severity = min_severity

    def write(self, event: "SecurityEvent") -> None:
        level = "fatal" if event.severity.value == "critical" else event.severity.value
        sentry_sdk.add_breadcrumb(
            category=f"query_shield.{event.category}",
            message=event.message or str(event.event_type),
            level=level,
            data=event.context,
        )
        if not self.accepts(event):
            return
        with sentry_sdk.new_scope() as scope:
            scope.set_tag("security.event_type", str(event.event_type))
            scope.set_tag("security.outcome", event.outcome.value)
            scope.set_context("security_event", event.to_dict())
            sentry_sdk.capture_message(
                event.message or str(event.event_type),
                level=level,
            )
