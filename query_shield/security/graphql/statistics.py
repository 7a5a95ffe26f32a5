"""
Rejection statistics for the query guard.
"""

import logging
from typing import Any, Dict, Optional

from ...rate_limiting import CacheCounterStore, CounterStore

logger = logging.getLogger(__name__)

TRACKED_REASONS = (
    "rate_limited",
    "introspection_blocked",
    "too_many_aliases",
    "too_many_directives",
    "field_duplication",
    "depth_exceeded",
    "complexity_exceeded",
    "query_too_long",
    "batch_limit_exceeded",
    "timeout_exceeded",
)


class GuardStatistics:
    """
    Per-reason rejection counters kept in a counter store.

    Counters live for ``window_seconds`` (a day by default). The total is
    cached for ``cache_seconds`` so dashboards polling it do not sum every
    counter on each call.
    """

    def __init__(
        self,
        store: Optional[CounterStore] = None,
        *,
        window_seconds: int = 86400,
        cache_seconds: int = 300,
        key_prefix: str = "graphql_blocked",
    ):
        self.store = store if store is not None else CacheCounterStore()
        self.window_seconds = window_seconds
        self.cache_seconds = cache_seconds
        self.key_prefix = key_prefix

    @classmethod
    def from_source(cls, source: Any, store: Optional[CounterStore] = None) -> "GuardStatistics":
        return cls(
            store,
            window_seconds=int(source.get("statistics_window_seconds", 86400) or 86400),
            cache_seconds=int(source.get("statistics_cache_seconds", 300) or 300),
        )

    def _key(self, reason: str) -> str:
        return f"{self.key_prefix}_{reason}"

    def record(self, reason: Any) -> None:
        """Count one rejection; store errors are logged, not raised."""
        name = getattr(reason, "value", reason)
        try:
            self.store.increment(self._key(name), self.window_seconds)
        except Exception as exc:
            logger.warning("Unable to record GraphQL rejection %s: %s", name, exc)

    def counts(self) -> Dict[str, int]:
        result = {}
        for reason in TRACKED_REASONS:
            try:
                result[reason] = int(self.store.get(self._key(reason)) or 0)
            except Exception as exc:
                logger.warning("Unable to read GraphQL rejection count %s: %s", reason, exc)
                result[reason] = 0
        return result

    def total_blocked(self) -> int:
        """Rejections in the current window, cached briefly."""
        cache_key = self._key("total")
        try:
            cached = self.store.get(cache_key)
        except Exception as exc:
            logger.debug("Unable to read cached GraphQL rejection total: %s", exc)
            cached = None
        if cached is not None:
            return int(cached)

        counts = self.counts()
        total = sum(count for reason, count in counts.items() if reason != "timeout_exceeded")
        try:
            self.store.set(cache_key, total, self.cache_seconds)
        except Exception as exc:
            logger.warning("Unable to cache GraphQL rejection total: %s", exc)
        return total

    def reset(self) -> None:
        for reason in TRACKED_REASONS + ("total",):
            self.store.delete(self._key(reason))
