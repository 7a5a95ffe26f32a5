"""
Unit tests for the security event bus and sinks.
"""

import json
import logging
from types import SimpleNamespace

import pytest
import requests

from query_shield.config_proxy import SettingsConfigSource
from query_shield.security.events import (
    EventBus,
    EventRedactor,
    EventType,
    LoggingSink,
    MemorySink,
    Outcome,
    SecurityEvent,
    Severity,
    WebhookSink,
    create_event_bus,
)
from query_shield.security.events.sinks.base import EventSink

pytestmark = pytest.mark.unit


class _FailingSink(EventSink):
    def write(self, event):
        raise RuntimeError("sink down")


class _SessionStub:
    def __init__(self, error=None):
        self.error = error
        self.posts = []

    def post(self, url, data=None, headers=None, timeout=None):
        if self.error is not None:
            raise self.error
        self.posts.append({"url": url, "data": json.loads(data), "timeout": timeout})
        return SimpleNamespace(raise_for_status=lambda: None)

    def close(self):
        pass


def test_record_builds_event_with_defaults():
    sink = MemorySink()
    bus = EventBus().add_sink(sink)

    bus.record(EventType.QUERY_BLOCKED_DEPTH, "Query too deep", {"limit": 8}, client_key="abc")

    (event,) = sink.events
    assert event.event_type == "query.blocked.depth"
    assert event.severity == Severity.WARNING
    assert event.outcome == Outcome.BLOCKED
    assert event.client_key == "abc"
    assert event.category == "query"


def test_failing_sink_does_not_block_others():
    sink = MemorySink()
    bus = EventBus().add_sink(_FailingSink()).add_sink(sink)

    bus.record("query.timeout", "slow", {})

    assert len(sink.events) == 1


def test_record_never_raises():
    bus = EventBus().add_sink(MemorySink())

    bus.record("query.request", "bad context", context=["not", "a", "mapping"])


def test_redactor_masks_sensitive_keys():
    redactor = EventRedactor()
    event = SecurityEvent(
        event_type="query.suspicious",
        context={
            "variables": {"id": 1},
            "nested": {"password": "hunter2", "query_length": 10},
            "items": [{"token": "t"}, "plain"],
            "query_length": 10,
        },
    )

    redacted = redactor.redact(event)

    assert redacted.context["variables"] == "***REDACTED***"
    assert redacted.context["nested"] == {"password": "***REDACTED***", "query_length": 10}
    assert redacted.context["items"] == [{"token": "***REDACTED***"}, "plain"]
    assert event.context["nested"]["password"] == "hunter2"


def test_async_bus_flushes_on_stop():
    sink = MemorySink()
    bus = EventBus(async_processing=True).add_sink(sink)
    bus.start()

    for index in range(5):
        bus.record("query.request", f"request {index}")
    bus.stop()

    assert len(sink.events) == 5


def test_logging_sink_writes_json(caplog):
    event = SecurityEvent(
        event_type="rate.limit.exceeded", message="Rate limit exceeded", severity=Severity.WARNING
    )

    with caplog.at_level(logging.WARNING, logger="security.audit"):
        LoggingSink().write(event)

    assert "QUERY_SHIELD_SECURITY: rate.limit.exceeded" in caplog.text
    assert '"outcome": "success"' in caplog.text


def test_webhook_sink_respects_min_severity():
    session = _SessionStub()
    sink = WebhookSink("https://hooks.example.com/security", session=session)

    sink.write(SecurityEvent(event_type="query.request", severity=Severity.INFO))
    sink.write(SecurityEvent(event_type="query.timeout", severity=Severity.WARNING))

    assert len(session.posts) == 1
    assert session.posts[0]["data"]["event_type"] == "query.timeout"
    assert session.posts[0]["timeout"] == 5


def test_webhook_sink_swallows_request_errors():
    session = _SessionStub(error=requests.ConnectionError("unreachable"))
    sink = WebhookSink("https://hooks.example.com/security", session=session)

    sink.write(SecurityEvent(event_type="system.error", severity=Severity.ERROR))


def test_create_event_bus_from_settings():
    source = SettingsConfigSource(
        {
            "event_sinks": ["logging"],
            "event_webhook_url": "https://hooks.example.com/security",
            "event_webhook_min_severity": "error",
        }
    )

    bus = create_event_bus(source)

    assert [type(sink) for sink in bus.sinks] == [LoggingSink, WebhookSink]
    assert bus.sinks[1].min_severity == "error"


def test_sentry_sink_captures_errors(monkeypatch):
    from query_shield.security.events.sinks import sentry as sentry_module

    breadcrumbs, messages = [], []
    monkeypatch.setattr(sentry_module.sentry_sdk, "add_breadcrumb", lambda **kw: breadcrumbs.append(kw))
    monkeypatch.setattr(
        sentry_module.sentry_sdk, "capture_message", lambda message, level=None: messages.append((message, level))
    )

    sink = sentry_module.SentrySink(min_severity="error")
    sink.write(SecurityEvent(event_type="query.timeout", message="slow", severity=Severity.WARNING))
    sink.write(SecurityEvent(event_type="system.error", message="broken", severity=Severity.CRITICAL))

    assert [crumb["category"] for crumb in breadcrumbs] == ["query_shield.query", "query_shield.system"]
    assert messages == [("broken", "fatal")]
