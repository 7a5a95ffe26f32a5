"""
Library defaults for Query Shield.

These values are used whenever neither runtime overrides nor the
``QUERY_SHIELD`` Django setting provide a key.
"""

from typing import Any, Dict

LIBRARY_DEFAULTS: Dict[str, Any] = {
    # Locally configured GraphQL limits
    "query_depth_limit": 8,
    "query_complexity_limit": 100,
    # Also reject on the estimated complexity, not only on query length
    "strict_complexity": False,
    # None means "derive from execution_time_limit"
    "query_timeout": None,
    # Worker execution limit in seconds (0 = unlimited)
    "execution_time_limit": 0,
    "headless_mode": False,
    # Rate limiting
    "rate_limit_window_seconds": 60,
    "rate_limit_purpose": "graphql",
    # Monitoring
    "log_all_requests": False,
    "statistics_window_seconds": 86400,
    "statistics_cache_seconds": 300,
    "event_sinks": ["logging"],
    "event_webhook_url": None,
    "event_webhook_min_severity": "warning",
    "event_async": False,
    # None keeps the built-in list of sensitive keys
    "event_redaction_fields": None,
    # HTTP
    "graphql_path": "/graphql",
}

# Hard bounds applied after resolution
DEPTH_BOUNDS = (1, 20)
COMPLEXITY_BOUNDS = (10, 1000)
TIMEOUT_BOUNDS = (1, 30)

# Base batch size and headless profile
BASE_BATCH_LIMIT = 10
HEADLESS_DEPTH_LIMIT = 15
HEADLESS_COMPLEXITY_LIMIT = 200
HEADLESS_TIMEOUT = 10
MAX_TIMEOUT = 30


def get_default(key: str, default: Any = None) -> Any:
    """Return the library default for ``key``."""
    return LIBRARY_DEFAULTS.get(key, default)
