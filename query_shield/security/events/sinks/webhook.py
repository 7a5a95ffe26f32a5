import json
import logging
from typing import TYPE_CHECKING, Optional

import requests
from django.core.serializers.json import DjangoJSONEncoder

from .base import EventSink

if TYPE_CHECKING:
    from ..types import SecurityEvent

logger = logging.getLogger(__name__)


class WebhookSink(EventSink):
    """POSTs each event as JSON to an external endpoint."""

    def __init__(
        self,
        url: str,
        timeout: int = 5,
        headers: Optional[dict] = None,
        min_severity: str = "warning",
        session: Optional[requests.Session] = None,
    ):
        self.url = url
        self.timeout = timeout
        self.headers = headers or {"Content-Type": "application/json"}
        self.min_severity = min_severity
        self.session = session or requests.Session()

    def write(self, event: "SecurityEvent") -> None:
        if not self.accepts(event):
            return

        payload = json.dumps(event.to_dict(), cls=DjangoJSONEncoder)
        try:
            response = self.session.post(
                self.url, data=payload, headers=self.headers, timeout=self.timeout
            )
            response.raise_for_status()
        except requests.RequestException as e:
            logger.warning(f"Security webhook delivery to {self.url} failed: {e}")

    def close(self) -> None:
        self.session.close()
