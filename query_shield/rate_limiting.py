"""
Rate limiting for Query Shield.

A fixed-window counter per client, backed by a counter store. Counting goes
through the store's atomic ``increment`` so that concurrent requests from the
same client can never both observe "under limit" past the cap.
"""

from __future__ import annotations

import hashlib
import ipaddress
import logging
import re
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, Protocol, Tuple

from django.core.cache import cache as default_cache

if TYPE_CHECKING:
    from .security.graphql.config import EffectiveConfig

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SECONDS = 60

_BUILD_TOOL_PATTERN = re.compile(r"(next|gatsby|nuxt|build|node|fetch)", re.IGNORECASE)

_IP_HEADERS = (
    "HTTP_CF_CONNECTING_IP",
    "HTTP_CLIENT_IP",
    "HTTP_X_FORWARDED_FOR",
    "HTTP_X_FORWARDED",
    "HTTP_FORWARDED_FOR",
    "HTTP_FORWARDED",
    "REMOTE_ADDR",
)


class CounterStore(Protocol):
    """Key-value store with TTL and an atomic increment."""

    def get(self, key: str) -> Optional[int]: ...

    def set(self, key: str, value: int, ttl_seconds: int) -> None: ...

    def increment(self, key: str, ttl_seconds: int, delta: int = 1) -> int:
        """Add ``delta`` and return the new value; a missing key starts a new TTL."""
        ...

    def delete(self, key: str) -> None: ...


class CacheCounterStore:
    """Counter store on top of a Django cache backend."""

    def __init__(self, cache: Any = None, key_prefix: str = "query_shield"):
        self._cache = cache if cache is not None else default_cache
        self.key_prefix = key_prefix

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}:{key}" if self.key_prefix else key

    def get(self, key: str) -> Optional[int]:
        value = self._cache.get(self._key(key))
        return None if value is None else int(value)

    def set(self, key: str, value: int, ttl_seconds: int) -> None:
        self._cache.set(self._key(key), int(value), timeout=ttl_seconds)

    def increment(self, key: str, ttl_seconds: int, delta: int = 1) -> int:
        cache_key = self._key(key)
        # add() only succeeds for the first writer of a window
        if self._cache.add(cache_key, int(delta), timeout=ttl_seconds):
            return int(delta)
        try:
            return int(self._cache.incr(cache_key, int(delta)))
        except ValueError:
            # Expired between add() and incr()
            if self._cache.add(cache_key, int(delta), timeout=ttl_seconds):
                return int(delta)
            return int(self._cache.incr(cache_key, int(delta)))

    def delete(self, key: str) -> None:
        self._cache.delete(self._key(key))


class MemoryCounterStore:
    """
    Process-local counter store guarded by a lock.

    Expired entries are dropped when read, and swept from the whole store
    on writes at most once per ``sweep_interval`` seconds.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic, sweep_interval: float = 60.0):
        self._clock = clock
        self._lock = threading.Lock()
        self._values: Dict[str, Tuple[int, float]] = {}
        self._sweep_interval = sweep_interval
        self._next_sweep = clock() + sweep_interval

    def size(self) -> int:
        with self._lock:
            return len(self._values)

    def _live(self, key: str) -> Optional[Tuple[int, float]]:
        entry = self._values.get(key)
        if entry is None:
            return None
        if entry[1] <= self._clock():
            del self._values[key]
            return None
        return entry

    def _sweep(self) -> None:
        now = self._clock()
        if now < self._next_sweep:
            return
        self._next_sweep = now + self._sweep_interval
        expired = [key for key, (_, expires_at) in self._values.items() if expires_at <= now]
        for key in expired:
            del self._values[key]

    def get(self, key: str) -> Optional[int]:
        with self._lock:
            entry = self._live(key)
            return None if entry is None else entry[0]

    def set(self, key: str, value: int, ttl_seconds: int) -> None:
        with self._lock:
            self._sweep()
            self._values[key] = (int(value), self._clock() + ttl_seconds)

    def increment(self, key: str, ttl_seconds: int, delta: int = 1) -> int:
        with self._lock:
            self._sweep()
            entry = self._live(key)
            if entry is None:
                value, expires_at = int(delta), self._clock() + ttl_seconds
            else:
                value, expires_at = entry[0] + int(delta), entry[1]
            self._values[key] = (value, expires_at)
            return value

    def delete(self, key: str) -> None:
        with self._lock:
            self._values.pop(key, None)


@dataclass(frozen=True)
class RateWindow:
    client_key: str
    window_start: Optional[float]
    count: int
    limit: int
    window_seconds: int = DEFAULT_WINDOW_SECONDS

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.count)


def client_key(identity: str) -> str:
    """Stable, non-reversible key for a client identity (usually an IP)."""
    return hashlib.md5((identity or "").encode("utf-8"), usedforsecurity=False).hexdigest()


def is_likely_build_process(user_agent: Optional[str]) -> bool:
    """True for static-site generators and SSR tooling doing bulk fetches."""
    return bool(user_agent) and _BUILD_TOOL_PATTERN.search(user_agent) is not None


def _is_public_ip(value: str) -> bool:
    try:
        address = ipaddress.ip_address(value)
    except ValueError:
        return False
    return not (
        address.is_private
        or address.is_reserved
        or address.is_loopback
        or address.is_link_local
        or address.is_unspecified
    )


def get_client_ip(request: Any) -> str:
    """
    Best-effort client IP for ``request``.

    Proxy and CDN headers are checked first; the first public address wins.
    Falls back to ``REMOTE_ADDR`` (or ``0.0.0.0``) when none qualifies.
    """
    meta = getattr(request, "META", None) or {}
    for header in _IP_HEADERS:
        raw = meta.get(header)
        if not raw:
            continue
        for candidate in str(raw).split(","):
            candidate = candidate.strip()
            if _is_public_ip(candidate):
                return candidate
    return meta.get("REMOTE_ADDR") or "0.0.0.0"


class RateLimiter:
    """
    Per-client fixed-window limiter with context-aware thresholds.

    Headless mode and build-tool traffic get the burst limit; everything else
    gets the per-minute limit derived from the effective configuration.
    """

    def __init__(
        self,
        store: Optional[CounterStore] = None,
        *,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
        purpose: str = "graphql",
    ):
        self.store = store if store is not None else CacheCounterStore()
        self.window_seconds = window_seconds
        self.purpose = purpose

    def _window_key(self, key: str) -> str:
        return f"{self.purpose}_rate_limit_{key}"

    def limit_for(self, config: "EffectiveConfig", user_agent: Optional[str] = None) -> int:
        from .security.graphql.config import rate_limits_for

        limits = rate_limits_for(config)
        if config.headless_mode or is_likely_build_process(user_agent):
            return limits["burst_limit"]
        return limits["requests_per_minute"]

    def allow(
        self,
        client_key: str,
        config: Optional["EffectiveConfig"] = None,
        *,
        user_agent: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> bool:
        """
        Count one request for ``client_key`` and report whether it fits the window.

        Store failures fail open: an unavailable store must not turn into a
        denial of service for legitimate traffic.
        """
        if limit is None:
            if config is None:
                raise ValueError("Either config or limit is required")
            limit = self.limit_for(config, user_agent)

        window_key = self._window_key(client_key)
        try:
            count = self.store.increment(window_key, self.window_seconds)
            if count == 1:
                self.store.set(f"{window_key}:start", int(time.time()), self.window_seconds)
        except Exception as exc:
            logger.warning("Rate limit store error for %s: %s", window_key, exc)
            return True

        if count > limit:
            logger.info("Rate limit reached for %s (%s/%s)", window_key, count, limit)
            return False
        return True

    def window(
        self,
        client_key: str,
        config: Optional["EffectiveConfig"] = None,
        *,
        user_agent: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> RateWindow:
        """Current window for ``client_key`` without counting a request."""
        if limit is None:
            limit = self.limit_for(config, user_agent) if config is not None else 0
        window_key = self._window_key(client_key)
        try:
            count = self.store.get(window_key) or 0
            start = self.store.get(f"{window_key}:start") if count else None
        except Exception as exc:
            logger.warning("Rate limit store error for %s: %s", window_key, exc)
            count, start = 0, None
        return RateWindow(
            client_key=client_key,
            window_start=float(start) if start is not None else None,
            count=count,
            limit=limit,
            window_seconds=self.window_seconds,
        )

    def reset(self, client_key: str) -> None:
        window_key = self._window_key(client_key)
        self.store.delete(window_key)
        self.store.delete(f"{window_key}:start")
