import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional, Union


class EventType(str, Enum):
    """Security event types emitted by the query guard."""
    # Query Security
    QUERY_BLOCKED_INTROSPECTION = "query.blocked.introspection"
    QUERY_BLOCKED_ALIASES = "query.blocked.aliases"
    QUERY_BLOCKED_DIRECTIVES = "query.blocked.directives"
    QUERY_BLOCKED_DUPLICATION = "query.blocked.duplication"
    QUERY_BLOCKED_DEPTH = "query.blocked.depth"
    QUERY_BLOCKED_COMPLEXITY = "query.blocked.complexity"
    QUERY_BLOCKED_BATCH = "query.blocked.batch"
    QUERY_SUSPICIOUS = "query.suspicious"
    QUERY_TIMEOUT = "query.timeout"
    QUERY_REQUEST = "query.request"

    # Rate Limiting
    RATE_LIMIT_EXCEEDED = "rate.limit.exceeded"

    # System
    SYSTEM_ERROR = "system.error"
    SYSTEM_CONFIG_CHANGE = "system.config.change"


class Severity(str, Enum):
    """Event severity levels (aligned with syslog)."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    @property
    def numeric(self) -> int:
        return {"debug": 0, "info": 1, "warning": 2, "error": 3, "critical": 4}[self.value]


class Outcome(str, Enum):
    """Result of the action."""
    SUCCESS = "success"
    FAILURE = "failure"
    BLOCKED = "blocked"
    FLAGGED = "flagged"
    ERROR = "error"


@dataclass
class SecurityEvent:
    """Structured security event."""
    event_type: str
    message: str = ""
    correlation_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    client_key: Optional[str] = None
    outcome: Outcome = Outcome.SUCCESS
    severity: Severity = Severity.INFO

    # Data (redacted before dispatch)
    context: dict = field(default_factory=dict)

    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def category(self) -> str:
        return str(self.event_type).split(".")[0]

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        data = asdict(self)
        data["event_type"] = str(self.event_type)
        data["severity"] = self.severity.value
        data["outcome"] = self.outcome.value
        data["category"] = self.category
        data["timestamp"] = self.timestamp.isoformat()
        return data


def normalize_event_type(event_type: Union[str, EventType]) -> str:
    if isinstance(event_type, EventType):
        return event_type.value
    return str(event_type)


DEFAULT_SEVERITY: Dict[str, Severity] = {
    EventType.QUERY_BLOCKED_INTROSPECTION.value: Severity.WARNING,
    EventType.QUERY_BLOCKED_ALIASES.value: Severity.WARNING,
    EventType.QUERY_BLOCKED_DIRECTIVES.value: Severity.WARNING,
    EventType.QUERY_BLOCKED_DUPLICATION.value: Severity.WARNING,
    EventType.QUERY_BLOCKED_DEPTH.value: Severity.WARNING,
    EventType.QUERY_BLOCKED_COMPLEXITY.value: Severity.WARNING,
    EventType.QUERY_BLOCKED_BATCH.value: Severity.WARNING,
    EventType.QUERY_SUSPICIOUS.value: Severity.WARNING,
    EventType.QUERY_TIMEOUT.value: Severity.WARNING,
    EventType.QUERY_REQUEST.value: Severity.DEBUG,
    EventType.RATE_LIMIT_EXCEEDED.value: Severity.WARNING,
    EventType.SYSTEM_ERROR.value: Severity.ERROR,
    EventType.SYSTEM_CONFIG_CHANGE.value: Severity.INFO,
}

DEFAULT_OUTCOME: Dict[str, Outcome] = {
    **{
        event_type.value: Outcome.BLOCKED
        for event_type in EventType
        if event_type.value.startswith("query.blocked.")
    },
    EventType.RATE_LIMIT_EXCEEDED.value: Outcome.BLOCKED,
    EventType.QUERY_SUSPICIOUS.value: Outcome.FLAGGED,
    EventType.QUERY_TIMEOUT.value: Outcome.FLAGGED,
    EventType.SYSTEM_ERROR.value: Outcome.ERROR,
}
