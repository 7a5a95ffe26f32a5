from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..types import SecurityEvent

SEVERITY_ORDER = ("debug", "info", "warning", "error", "critical")


class EventSink(ABC):
    """
    Destination for security events.

    Sinks only receive events at or above ``min_severity``; the bus calls
    ``accepts`` and ``write`` and treats any exception as a sink failure.
    """

    min_severity: str = "debug"

    def accepts(self, event: "SecurityEvent") -> bool:
        try:
            threshold = SEVERITY_ORDER.index(self.min_severity)
        except ValueError:
            return True
        return event.severity.numeric >= threshold

    @abstractmethod
    def write(self, event: "SecurityEvent") -> None:
        """Deliver one event."""

    def flush(self) -> None:
        """Deliver buffered events, if any."""

    def close(self) -> None:
        """Release connections or handles."""
