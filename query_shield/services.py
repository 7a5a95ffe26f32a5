"""
Service hooks for pluggable runtime components.

The HTTP view and the management command obtain their guard through
``get_query_guard``; projects wiring their own resolver, counter store or
event bus register a factory with ``set_query_guard_factory``.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Callable, Optional

if TYPE_CHECKING:
    from .security.graphql.guard import QueryGuard

QueryGuardFactory = Callable[[], "QueryGuard"]

_query_guard_factory: Optional[QueryGuardFactory] = None
_default_guard: Optional["QueryGuard"] = None
_lock = threading.Lock()


def set_query_guard_factory(factory: Optional[QueryGuardFactory]) -> None:
    global _query_guard_factory
    _query_guard_factory = factory


def build_default_guard() -> "QueryGuard":
    from .security.graphql.config import ConfigResolver
    from .security.graphql.guard import QueryGuard
    from .security.graphql.statistics import GuardStatistics

    resolver = ConfigResolver()
    return QueryGuard(resolver, statistics=GuardStatistics.from_source(resolver.source))


def get_query_guard() -> "QueryGuard":
    global _default_guard
    if _query_guard_factory is not None:
        return _query_guard_factory()
    with _lock:
        if _default_guard is None:
            _default_guard = build_default_guard()
        return _default_guard


def reset_query_guard() -> None:
    """Forget the process-wide guard (tests, settings reloads)."""
    global _default_guard
    with _lock:
        _default_guard = None
