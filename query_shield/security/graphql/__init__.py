"""
GraphQL security package for Query Shield.
"""

from .analyzer import PatternAnalyzer, QuerySignature
from .config import (
    ConfigResolver,
    EffectiveConfig,
    EndpointAccess,
    SecurityLevel,
    adaptive_limits,
    rate_limits_for,
)
from .exceptions import GuardRejection, RateLimited, TimeoutExceeded, ValidationRejected
from .guard import (
    GuardDecision,
    GuardReason,
    QueryGuard,
    RequestInterceptor,
    RequestState,
    is_production_environment,
    validate_signature,
)
from .statistics import GuardStatistics

__all__ = [
    "ConfigResolver",
    "EffectiveConfig",
    "EndpointAccess",
    "GuardDecision",
    "GuardReason",
    "GuardRejection",
    "GuardStatistics",
    "PatternAnalyzer",
    "QueryGuard",
    "QuerySignature",
    "RateLimited",
    "RequestInterceptor",
    "RequestState",
    "SecurityLevel",
    "TimeoutExceeded",
    "ValidationRejected",
    "adaptive_limits",
    "is_production_environment",
    "rate_limits_for",
    "validate_signature",
]
