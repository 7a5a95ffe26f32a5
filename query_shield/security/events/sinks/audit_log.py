import json
import logging
from typing import TYPE_CHECKING

from django.core.serializers.json import DjangoJSONEncoder

from .base import EventSink

if TYPE_CHECKING:
    from ..types import SecurityEvent

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


class LoggingSink(EventSink):
    """Writes events to Python logging (structured JSON)."""

    def __init__(self, logger_name: str = "security.audit"):
        self.logger = logging.getLogger(logger_name)

    def write(self, event: "SecurityEvent") -> None:
        message = json.dumps(event.to_dict(), cls=DjangoJSONEncoder, ensure_ascii=False)
        level = _LEVELS.get(event.severity.value, logging.INFO)
        self.logger.log(level, "QUERY_SHIELD_SECURITY: %s - %s", event.event_type, message)
