"""
GraphQL security configuration.

``ConfigResolver`` merges three layers into one ``EffectiveConfig`` snapshot:
locally configured values, the host GraphQL server's native settings, and the
headless profile. Snapshots are cached until ``invalidate()`` is called or the
configuration source reports a new version.
"""

import logging
import math
import threading
import weakref
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Tuple

from django.core.signals import setting_changed
from django.dispatch import receiver

from ...config_proxy import (
    HOST_SETTINGS_NAME,
    SETTINGS_NAME,
    DjangoHostSettings,
    SettingsConfigSource,
)
from ...defaults import (
    BASE_BATCH_LIMIT,
    COMPLEXITY_BOUNDS,
    DEPTH_BOUNDS,
    HEADLESS_COMPLEXITY_LIMIT,
    HEADLESS_DEPTH_LIMIT,
    HEADLESS_TIMEOUT,
    MAX_TIMEOUT,
    TIMEOUT_BOUNDS,
)

logger = logging.getLogger(__name__)


class EndpointAccess(str, Enum):
    """Who may reach the GraphQL endpoint."""
    PUBLIC = "public"
    RESTRICTED = "restricted"


class SecurityLevel(str, Enum):
    """Reported security level of a configuration."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class EffectiveConfig:
    """Resolved GraphQL security limits."""
    query_depth_limit: int = 8
    query_complexity_limit: int = 100
    query_timeout_seconds: int = MAX_TIMEOUT
    introspection_enabled: bool = False
    debug_mode: bool = False
    endpoint_access: EndpointAccess = EndpointAccess.PUBLIC
    batch_enabled: bool = True
    batch_limit: int = BASE_BATCH_LIMIT
    headless_mode: bool = False
    alias_limit: int = 20
    directive_limit: int = 15
    field_duplicate_limit: int = 10
    strict_complexity: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["endpoint_access"] = self.endpoint_access.value
        return data


class ConfigSource(Protocol):
    def get(self, key: str, default: Any = None) -> Any: ...


class HostSettings(Protocol):
    def is_available(self) -> bool: ...

    def get(self, key: str, default: Any = None) -> Any: ...


def adaptive_limits(headless: bool) -> Dict[str, int]:
    """Alias, directive and field-duplicate limits for the given mode."""
    return {
        "alias_limit": 50 if headless else 20,
        "directive_limit": 30 if headless else 15,
        "field_duplicate_limit": 20 if headless else 10,
    }


def _coerce_int(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return default
        return int(value)
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return default


def _coerce_switch(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    normalized = str(value).strip().lower()
    if normalized in {"on", "1", "true", "yes", "enabled"}:
        return True
    if normalized in {"off", "0", "false", "no", "disabled", ""}:
        return False
    return default


def _clamp(value: int, bounds: Tuple[int, int]) -> int:
    low, high = bounds
    return max(low, min(high, value))


_resolvers: "weakref.WeakSet[ConfigResolver]" = weakref.WeakSet()


class ConfigResolver:
    """
    Resolve the effective GraphQL security configuration.

    Resolution is a cheap, idempotent read of already-consistent inputs, so
    concurrent ``resolve()`` calls may race safely: each publishes a complete
    immutable snapshot.
    """

    def __init__(
        self,
        source: Optional[ConfigSource] = None,
        host_settings: Optional[HostSettings] = None,
    ):
        """
        Args:
            source: Persisted key-value settings (defaults to Django settings)
            host_settings: Native settings of the host GraphQL server
        """
        self.source = source if source is not None else SettingsConfigSource()
        self.host_settings = host_settings if host_settings is not None else DjangoHostSettings()
        self._lock = threading.Lock()
        self._cache: Optional[EffectiveConfig] = None
        self._cache_version: Any = None
        _resolvers.add(self)

    def resolve(self) -> EffectiveConfig:
        """Return the cached snapshot, rebuilding it when stale."""
        version = getattr(self.source, "version", None)
        with self._lock:
            cached = self._cache
            if cached is not None and self._cache_version == version:
                return cached

        config = self._build()
        with self._lock:
            self._cache = config
            self._cache_version = version
        return config

    def invalidate(self) -> None:
        """Drop the cached snapshot."""
        with self._lock:
            self._cache = None
            self._cache_version = None

    def is_headless_mode(self) -> bool:
        try:
            return _coerce_switch(self.source.get("headless_mode", False))
        except Exception as exc:
            logger.debug("Unable to read headless mode: %s", exc)
            return False

    def set_headless_mode(self, enabled: bool) -> None:
        """Persist the headless flag (when the source is writable) and invalidate."""
        setter = getattr(self.source, "set", None)
        if callable(setter):
            setter("headless_mode", bool(enabled))
        else:
            logger.warning(
                "Configuration source %s is read-only; headless mode not persisted",
                type(self.source).__name__,
            )
        self.invalidate()

    def execution_time_limit(self) -> int:
        """Worker execution limit in seconds, 0 meaning unlimited."""
        try:
            limit = _coerce_int(self.source.get("execution_time_limit", 0), 0)
        except Exception:
            return 0
        return max(0, limit)

    def _default_timeout(self) -> int:
        limit = self.execution_time_limit()
        return min(limit, MAX_TIMEOUT) if limit > 0 else MAX_TIMEOUT

    def _timeout_is_configured(self) -> bool:
        is_set = getattr(self.source, "is_set", None)
        if callable(is_set):
            return bool(is_set("query_timeout"))
        return self.source.get("query_timeout") is not None

    def _build(self) -> EffectiveConfig:
        try:
            return self._load()
        except Exception as exc:
            logger.warning("GraphQL configuration unavailable, using defaults: %s", exc)
            return EffectiveConfig(query_timeout_seconds=self._safe_default_timeout())

    def _safe_default_timeout(self) -> int:
        try:
            return self._default_timeout()
        except Exception:
            return MAX_TIMEOUT

    def _load(self) -> EffectiveConfig:
        headless = self.is_headless_mode()
        source = self.source

        depth = _coerce_int(source.get("query_depth_limit", 8), 8)
        complexity = _coerce_int(source.get("query_complexity_limit", 100), 100)
        default_timeout = self._default_timeout()
        timeout_configured = self._timeout_is_configured()
        timeout = _coerce_int(source.get("query_timeout", default_timeout), default_timeout)

        if headless:
            depth = max(depth, HEADLESS_DEPTH_LIMIT)
            complexity = max(complexity, HEADLESS_COMPLEXITY_LIMIT)

        values: Dict[str, Any] = {
            "introspection_enabled": False,
            "debug_mode": False,
            "endpoint_access": EndpointAccess.PUBLIC,
            "batch_enabled": True,
            "batch_limit": BASE_BATCH_LIMIT,
        }

        if self._host_available():
            depth = self._apply_host_settings(values, depth)
        elif headless and not timeout_configured:
            timeout = HEADLESS_TIMEOUT

        return EffectiveConfig(
            query_depth_limit=_clamp(depth, DEPTH_BOUNDS),
            query_complexity_limit=_clamp(complexity, COMPLEXITY_BOUNDS),
            query_timeout_seconds=_clamp(timeout, TIMEOUT_BOUNDS),
            headless_mode=headless,
            strict_complexity=_coerce_switch(source.get("strict_complexity", False)),
            **{**values, "batch_limit": max(1, values["batch_limit"])},
            **adaptive_limits(headless),
        )

    def _host_available(self) -> bool:
        if self.host_settings is None:
            return False
        try:
            return bool(self.host_settings.is_available())
        except Exception as exc:
            logger.debug("Host GraphQL settings unavailable: %s", exc)
            return False

    def _apply_host_settings(self, values: Dict[str, Any], depth: int) -> int:
        host = self.host_settings

        # Never widen depth beyond the host's own ceiling
        if _coerce_switch(host.get("query_depth_enabled", "off")):
            host_depth = _coerce_int(host.get("query_depth_max_depth", 10), 10)
            if host_depth < depth:
                depth = host_depth

        values["introspection_enabled"] = _coerce_switch(
            host.get("public_introspection_enabled", "off")
        )
        values["debug_mode"] = _coerce_switch(host.get("debug_mode_enabled", "off"))
        restricted = _coerce_switch(host.get("restrict_endpoint_to_authenticated_users", "off"))
        values["endpoint_access"] = (
            EndpointAccess.RESTRICTED if restricted else EndpointAccess.PUBLIC
        )
        values["batch_enabled"] = _coerce_switch(host.get("batch_queries_enabled", "on"), True)
        values["batch_limit"] = _coerce_int(host.get("batch_limit", BASE_BATCH_LIMIT), BASE_BATCH_LIMIT)
        return depth

    def safe_limit(self, limit_type: str) -> int:
        """
        Look up a single limit by name.

        Args:
            limit_type: depth, complexity, timeout, aliases, directives or field_duplicates

        Returns:
            The limit, or 0 for an unknown type
        """
        config = self.resolve()
        return {
            "depth": config.query_depth_limit,
            "complexity": config.query_complexity_limit,
            "timeout": config.query_timeout_seconds,
            "aliases": config.alias_limit,
            "directives": config.directive_limit,
            "field_duplicates": config.field_duplicate_limit,
        }.get(limit_type, 0)

    def rate_limiting_config(self, config: Optional[EffectiveConfig] = None) -> Dict[str, int]:
        """Requests per minute, burst limit and timeout for ``config``."""
        config = config or self.resolve()
        return rate_limits_for(config)

    def timeout_config(self) -> Dict[str, Any]:
        limit = self.execution_time_limit()
        return {
            "execution_time_limit": limit,
            "current_timeout": self.resolve().query_timeout_seconds,
            "is_unlimited": limit == 0,
            "is_using_default": not self._timeout_is_configured(),
            "recommended_min": 5,
            "recommended_max": min(limit, 60) if limit > 0 else 60,
        }

    def recommendations(self, config: Optional[EffectiveConfig] = None) -> List[Dict[str, str]]:
        config = config or self.resolve()
        recommendations = []
        if config.introspection_enabled:
            recommendations.append({
                "level": "warning",
                "message": "Public introspection enabled (security risk)",
            })
        if config.debug_mode:
            recommendations.append({
                "level": "warning",
                "message": "Debug mode enabled (not recommended for production)",
            })
        if config.endpoint_access == EndpointAccess.PUBLIC:
            recommendations.append({
                "level": "info",
                "message": "GraphQL endpoint is publicly accessible",
            })
        return recommendations

    def security_level(self, config: Optional[EffectiveConfig] = None) -> SecurityLevel:
        """Score ``config`` for reporting; never used for enforcement."""
        config = config or self.resolve()
        score = 0
        if not config.introspection_enabled:
            score += 2
        if not config.debug_mode:
            score += 2
        if config.endpoint_access == EndpointAccess.RESTRICTED:
            score += 3
        if 0 < config.query_depth_limit <= 15:
            score += 2
        if config.batch_limit <= 20:
            score += 1

        if score >= 8:
            return SecurityLevel.HIGH
        if score >= 5:
            return SecurityLevel.MEDIUM
        return SecurityLevel.LOW

    def integration_status(self) -> Dict[str, Any]:
        config = self.resolve()
        return {
            "host_available": self._host_available(),
            "headless_mode": config.headless_mode,
            "current_config": config.to_dict(),
            "security_level": self.security_level(config).value,
            "rate_limiting": self.rate_limiting_config(config),
            "recommendations": self.recommendations(config),
        }

    def headless_recommendations(self) -> Dict[str, Any]:
        recommendations: Dict[str, Any] = {
            "max_query_depth": 20,
            "max_query_complexity": 1000,
            "query_timeout": 30,
            "rate_limit_per_minute": 300,
            "recommended_settings": [
                "Enable headless mode for relaxed limits",
                "Consider using query whitelisting for production",
                "Monitor query performance with logging",
                "Use query complexity analysis tools",
            ],
        }
        if self._host_available():
            host = self.host_settings
            recommendations["host_integration"] = {
                "current_introspection": host.get("public_introspection_enabled", "off"),
                "current_batch_enabled": host.get("batch_queries_enabled", "on"),
                "current_batch_limit": host.get("batch_limit", BASE_BATCH_LIMIT),
                "current_depth_enabled": host.get("query_depth_enabled", "off"),
                "current_max_depth": host.get("query_depth_max_depth", 10),
                "recommendations": [
                    "For headless CMS: Enable query depth limiting with max depth 15-20",
                    "For headless CMS: Keep batch queries enabled with limit 10-20",
                    "For production: Disable public introspection",
                    "For production: Disable debug mode",
                    "Consider authentication restriction based on your use case",
                ],
            }
        return recommendations


def rate_limits_for(config: EffectiveConfig) -> Dict[str, int]:
    """
    Derive per-minute request limits from ``config``.

    Batching scales the base limit since one HTTP request may carry several
    operations.
    """
    base_limit = 120 if config.headless_mode else 60
    if config.batch_enabled and config.batch_limit > 1:
        adjusted_limit = base_limit + min(config.batch_limit, 10) * 10
    else:
        adjusted_limit = base_limit
    return {
        "requests_per_minute": adjusted_limit,
        "burst_limit": int(adjusted_limit * 1.5),
        "timeout_seconds": config.query_timeout_seconds,
    }


@receiver(setting_changed)
def _invalidate_on_setting_change(sender, setting, **kwargs):
    if setting in {SETTINGS_NAME, HOST_SETTINGS_NAME}:
        for resolver in list(_resolvers):
            resolver.invalidate()
