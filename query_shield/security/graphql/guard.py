"""
Query guard for GraphQL requests.

``QueryGuard`` drives one request through its lifecycle,
RECEIVED -> VALIDATED -> EXECUTING -> COMPLETED, with a short-circuit to
REJECTED from either of the first two states.

``inspect`` runs before execution (rate limit pre-flight, then the pattern
checks in a fixed order, first failure wins). ``finalize`` runs after
execution and flags slow responses with an advisory timeout error.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Protocol

from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder
from graphql import ExecutionResult, GraphQLError

from ...rate_limiting import RateLimiter, client_key
from ..events.types import EventType
from .analyzer import PatternAnalyzer, QuerySignature
from .config import ConfigResolver, EffectiveConfig
from .exceptions import (
    QUERY_TIMEOUT_CODE,
    GuardRejection,
    RateLimited,
    TimeoutExceeded,
    ValidationRejected,
)

logger = logging.getLogger(__name__)


class GuardReason(str, Enum):
    """Machine-readable outcome of a guard check."""
    OK = "ok"
    RATE_LIMITED = "rate_limited"
    DEPTH_EXCEEDED = "depth_exceeded"
    COMPLEXITY_EXCEEDED = "complexity_exceeded"
    TOO_MANY_ALIASES = "too_many_aliases"
    TOO_MANY_DIRECTIVES = "too_many_directives"
    FIELD_DUPLICATION = "field_duplication"
    QUERY_TOO_LONG = "query_too_long"
    INTROSPECTION_BLOCKED = "introspection_blocked"
    TIMEOUT_EXCEEDED = "timeout_exceeded"
    BATCH_LIMIT_EXCEEDED = "batch_limit_exceeded"


class RequestState(str, Enum):
    RECEIVED = "received"
    VALIDATED = "validated"
    EXECUTING = "executing"
    COMPLETED = "completed"
    REJECTED = "rejected"


_REASON_EVENTS: Dict[GuardReason, EventType] = {
    GuardReason.RATE_LIMITED: EventType.RATE_LIMIT_EXCEEDED,
    GuardReason.INTROSPECTION_BLOCKED: EventType.QUERY_BLOCKED_INTROSPECTION,
    GuardReason.TOO_MANY_ALIASES: EventType.QUERY_BLOCKED_ALIASES,
    GuardReason.TOO_MANY_DIRECTIVES: EventType.QUERY_BLOCKED_DIRECTIVES,
    GuardReason.FIELD_DUPLICATION: EventType.QUERY_BLOCKED_DUPLICATION,
    GuardReason.DEPTH_EXCEEDED: EventType.QUERY_BLOCKED_DEPTH,
    GuardReason.COMPLEXITY_EXCEEDED: EventType.QUERY_BLOCKED_COMPLEXITY,
    GuardReason.QUERY_TOO_LONG: EventType.QUERY_BLOCKED_COMPLEXITY,
    GuardReason.BATCH_LIMIT_EXCEEDED: EventType.QUERY_BLOCKED_BATCH,
}


@dataclass(frozen=True)
class GuardDecision:
    """Verdict for one request. Built per request, never stored."""
    allow: bool
    reason: GuardReason = GuardReason.OK
    detail: str = ""
    measured: Optional[int] = None
    limit: Optional[int] = None

    @classmethod
    def allowed(cls) -> "GuardDecision":
        return cls(allow=True)

    @classmethod
    def rejected(
        cls,
        reason: GuardReason,
        detail: str,
        measured: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> "GuardDecision":
        return cls(allow=False, reason=reason, detail=detail, measured=measured, limit=limit)

    @property
    def state(self) -> RequestState:
        return RequestState.VALIDATED if self.allow else RequestState.REJECTED

    @property
    def status_code(self) -> int:
        if self.allow:
            return 200
        if self.reason == GuardReason.RATE_LIMITED:
            return 429
        return 400

    def as_error(self) -> Optional[GuardRejection]:
        """The error to report for a rejection, or None when allowed."""
        if self.allow:
            return None
        extensions = {}
        if self.measured is not None:
            extensions["measured"] = self.measured
        if self.limit is not None:
            extensions["limit"] = self.limit
        error_class = RateLimited if self.reason == GuardReason.RATE_LIMITED else ValidationRejected
        return error_class(self.detail, self.reason.value, extensions)

    def raise_for_rejection(self) -> None:
        error = self.as_error()
        if error is not None:
            raise error


class RequestInterceptor(Protocol):
    """Hooks a host request pipeline calls around query execution."""

    def inspect(
        self, raw_query: str, client_identity: str, is_production: Optional[bool] = None
    ) -> GuardDecision: ...

    def finalize(self, response: Any, elapsed_seconds: float) -> Any: ...


def is_production_environment() -> bool:
    """``settings.ENVIRONMENT == "production"``; without it, any non-DEBUG deployment."""
    environment = getattr(settings, "ENVIRONMENT", None)
    if environment:
        return str(environment).lower() == "production"
    return not getattr(settings, "DEBUG", False)


def validate_signature(
    signature: QuerySignature, config: EffectiveConfig, is_production: bool
) -> GuardDecision:
    """
    Run the pattern checks against ``config``.

    The order is fixed and the first failing check decides the reason. With
    ``strict_complexity`` enabled the estimated complexity is checked last.
    """
    if signature.is_introspection and is_production and not config.introspection_enabled:
        return GuardDecision.rejected(
            GuardReason.INTROSPECTION_BLOCKED,
            "Introspection is disabled in production.",
        )

    if signature.alias_count > config.alias_limit:
        return GuardDecision.rejected(
            GuardReason.TOO_MANY_ALIASES,
            "Query contains too many aliases (%d). Maximum allowed: %d"
            % (signature.alias_count, config.alias_limit),
            signature.alias_count,
            config.alias_limit,
        )

    directive_limit = config.directive_limit * 2
    if signature.directive_count > directive_limit:
        return GuardDecision.rejected(
            GuardReason.TOO_MANY_DIRECTIVES,
            "Query contains too many directives (%d). Maximum allowed: %d"
            % (signature.directive_count, directive_limit),
            signature.directive_count,
            directive_limit,
        )

    if signature.has_duplicate_fields:
        return GuardDecision.rejected(
            GuardReason.FIELD_DUPLICATION,
            "Query contains excessive field duplication. Maximum allowed: %d"
            % config.field_duplicate_limit,
            limit=config.field_duplicate_limit,
        )

    if signature.exceeds_depth(config.query_depth_limit):
        return GuardDecision.rejected(
            GuardReason.DEPTH_EXCEEDED,
            "Query depth exceeds maximum limit of %d levels." % config.query_depth_limit,
            signature.brace_run,
            config.query_depth_limit,
        )

    max_length = config.query_complexity_limit * 100
    if signature.length > max_length:
        return GuardDecision.rejected(
            GuardReason.QUERY_TOO_LONG,
            "Query is too large (%d characters). Maximum allowed: %d characters."
            % (signature.length, max_length),
            signature.length,
            max_length,
        )

    if config.strict_complexity and signature.estimated_complexity > config.query_complexity_limit:
        return GuardDecision.rejected(
            GuardReason.COMPLEXITY_EXCEEDED,
            "Query complexity (%d) exceeds maximum allowed: %d"
            % (signature.estimated_complexity, config.query_complexity_limit),
            signature.estimated_complexity,
            config.query_complexity_limit,
        )

    return GuardDecision.allowed()


class QueryGuard:
    """
    Request interceptor enforcing GraphQL query limits.

    Collaborators are injected so one guard can be wired to any settings
    source, counter store and event bus.
    """

    def __init__(
        self,
        resolver: Optional[ConfigResolver] = None,
        analyzer: Optional[PatternAnalyzer] = None,
        limiter: Optional[RateLimiter] = None,
        events: Any = None,
        statistics: Any = None,
    ):
        """
        Args:
            resolver: Source of the effective configuration
            analyzer: Raw-text query analyzer
            limiter: Per-client rate limiter
            events: Object with ``record(event_type, message, context)``
            statistics: Optional ``GuardStatistics`` collecting rejection counts
        """
        self.resolver = resolver if resolver is not None else ConfigResolver()
        self.analyzer = analyzer if analyzer is not None else PatternAnalyzer()
        source = self.resolver.source
        if limiter is None:
            limiter = RateLimiter(
                window_seconds=int(source.get("rate_limit_window_seconds", 60) or 60),
                purpose=source.get("rate_limit_purpose", "graphql") or "graphql",
            )
        self.limiter = limiter
        if events is None:
            from ..events.bus import create_event_bus

            events = create_event_bus(source)
        self.events = events
        self.statistics = statistics

    def inspect(
        self,
        raw_query: Optional[str],
        client_identity: str,
        is_production: Optional[bool] = None,
        *,
        user_agent: Optional[str] = None,
    ) -> GuardDecision:
        """
        Decide whether a query may execute.

        Args:
            raw_query: Raw GraphQL request text
            client_identity: Opaque client identity, usually the client IP
            is_production: Overrides environment detection when given
            user_agent: Request user agent, used to spot build tooling

        Returns:
            GuardDecision for this request
        """
        query = raw_query or ""
        if not query:
            return GuardDecision.allowed()

        config = self.resolver.resolve()
        key = client_key(client_identity)

        if not self.limiter.allow(key, config, user_agent=user_agent):
            decision = GuardDecision.rejected(
                GuardReason.RATE_LIMITED,
                "Rate limit exceeded. Please try again later.",
            )
            self._rejected(decision, key, query)
            return decision

        if is_production is None:
            is_production = is_production_environment()

        decision = validate_signature(self.analyzer.analyze(query), config, is_production)
        if not decision.allow:
            self._rejected(decision, key, query)
        return decision

    def check_batch(self, size: int, client_identity: Optional[str] = None) -> GuardDecision:
        """Validate the number of operations in a batched request."""
        config = self.resolver.resolve()
        if size > 1 and not config.batch_enabled:
            decision = GuardDecision.rejected(
                GuardReason.BATCH_LIMIT_EXCEEDED,
                "Batch queries are disabled.",
                size,
                1,
            )
        elif size > config.batch_limit:
            decision = GuardDecision.rejected(
                GuardReason.BATCH_LIMIT_EXCEEDED,
                "Batch contains too many operations (%d). Maximum allowed: %d"
                % (size, config.batch_limit),
                size,
                config.batch_limit,
            )
        else:
            return GuardDecision.allowed()

        key = client_key(client_identity) if client_identity is not None else None
        self._rejected(decision, key, "")
        return decision

    def finalize(
        self,
        response: Any,
        elapsed_seconds: float,
        *,
        query: Optional[str] = None,
        client_identity: Optional[str] = None,
        operation_name: Optional[str] = None,
    ) -> Any:
        """
        Annotate a finished response.

        Appends one ``QUERY_TIMEOUT`` error when ``elapsed_seconds`` exceeds the
        configured timeout, keeping any data already produced. Accepts a
        response mapping or a graphql-core ``ExecutionResult`` and returns the
        same kind.
        """
        config = self.resolver.resolve()
        timeout = config.query_timeout_seconds

        if elapsed_seconds > timeout:
            error = TimeoutExceeded(elapsed_seconds, timeout)
            annotated = _append_timeout(response, error)
            if annotated is not response:
                self._timed_out(error, elapsed_seconds, timeout, client_identity)
            response = annotated

        if query:
            self._monitor(response, query, elapsed_seconds, config, client_identity, operation_name)
        return response

    def _timed_out(
        self,
        error: TimeoutExceeded,
        elapsed_seconds: float,
        timeout: int,
        client_identity: Optional[str],
    ) -> None:
        key = client_key(client_identity) if client_identity is not None else None
        logger.warning("GraphQL query exceeded timeout (%.2fs > %ss)", elapsed_seconds, timeout)
        if self.statistics is not None:
            self.statistics.record(GuardReason.TIMEOUT_EXCEEDED)
        self.events.record(
            EventType.QUERY_TIMEOUT,
            error.message,
            {"elapsed_seconds": round(elapsed_seconds, 3), "timeout_seconds": timeout},
            client_key=key,
        )

    def _rejected(self, decision: GuardDecision, key: Optional[str], query: str) -> None:
        logger.info("GraphQL query rejected (%s): %s", decision.reason.value, decision.detail)
        if self.statistics is not None:
            self.statistics.record(decision.reason)
        event_type = _REASON_EVENTS.get(decision.reason, EventType.QUERY_BLOCKED_COMPLEXITY)
        context = {"reason": decision.reason.value, "query_length": len(query)}
        if decision.measured is not None:
            context["measured"] = decision.measured
        if decision.limit is not None:
            context["limit"] = decision.limit
        self.events.record(event_type, decision.detail, context, client_key=key)

    def _monitor(
        self,
        response: Any,
        query: str,
        elapsed_seconds: float,
        config: EffectiveConfig,
        client_identity: Optional[str],
        operation_name: Optional[str],
    ) -> None:
        # Monitoring must never fail the request
        try:
            log_data = {
                "timestamp": datetime.now(timezone.utc),
                "client_key": client_key(client_identity) if client_identity else None,
                "operation": operation_name,
                "query_length": len(query),
                "estimated_complexity": self.analyzer.analyze(query).estimated_complexity,
                "has_errors": _has_errors(response),
                "execution_time": round(elapsed_seconds, 3),
            }

            markers = self.analyzer.suspicious_markers(query, config)
            if markers:
                log_data["suspicious"] = True
                log_data["markers"] = markers
                log_data["query_preview"] = query[:200] + "..."
                logger.warning(
                    "Suspicious GraphQL query - %s", json.dumps(log_data, cls=DjangoJSONEncoder)
                )
                self.events.record(
                    EventType.QUERY_SUSPICIOUS,
                    "Suspicious GraphQL query",
                    log_data,
                    client_key=log_data["client_key"],
                )

            source = self.resolver.source
            if config.debug_mode or source.get("log_all_requests", False) or settings.DEBUG:
                logger.debug("GraphQL request: %s", json.dumps(log_data, cls=DjangoJSONEncoder))
        except Exception as exc:
            logger.warning("GraphQL request monitoring failed: %s", exc)


def _has_errors(response: Any) -> bool:
    if isinstance(response, ExecutionResult):
        return bool(response.errors)
    if isinstance(response, dict):
        return bool(response.get("errors"))
    return False


def _is_timeout_entry(error: Any) -> bool:
    if isinstance(error, GraphQLError):
        extensions = error.extensions or {}
    elif isinstance(error, dict):
        extensions = error.get("extensions") or {}
    else:
        return False
    return extensions.get("code") == QUERY_TIMEOUT_CODE


def _append_timeout(response: Any, error: TimeoutExceeded) -> Any:
    """Return ``response`` with ``error`` appended, unless one is already present."""
    if isinstance(response, ExecutionResult):
        errors = list(response.errors or [])
        if any(_is_timeout_entry(existing) for existing in errors):
            return response
        return ExecutionResult(
            data=response.data,
            errors=errors + [error],
            extensions=response.extensions,
        )

    if isinstance(response, dict):
        errors = list(response.get("errors") or [])
        if any(_is_timeout_entry(existing) for existing in errors):
            return response
        annotated = dict(response)
        annotated["errors"] = errors + [error.formatted]
        return annotated

    logger.warning("Cannot annotate response of type %s with timeout", type(response).__name__)
    return response
