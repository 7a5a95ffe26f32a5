"""
Configuration sources for Query Shield.

This module provides the settings proxy the engine reads its persisted
configuration from, plus the adapter exposing the host GraphQL server's
native settings.
"""

import logging
import threading
from typing import Any, Dict, Optional

from django.conf import settings

from .defaults import LIBRARY_DEFAULTS

logger = logging.getLogger(__name__)

SETTINGS_NAME = "QUERY_SHIELD"
HOST_SETTINGS_NAME = "QUERY_SHIELD_HOST_SETTINGS"

_MISSING = object()


class SettingsConfigSource:
    """
    Proxy for reading Query Shield settings with hierarchical resolution.

    Settings are resolved in the following order:
    1. Runtime overrides (via ``set``)
    2. Global Django settings (``QUERY_SHIELD``)
    3. Library defaults (``LIBRARY_DEFAULTS``)

    ``version`` is bumped on every write so callers holding derived state can
    tell that the source changed.
    """

    def __init__(self, overrides: Optional[Dict[str, Any]] = None):
        """
        Initialize the settings proxy.

        Args:
            overrides: Initial runtime overrides
        """
        self._overrides: Dict[str, Any] = dict(overrides or {})
        self._lock = threading.Lock()
        self.version = 0

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a setting value from the highest priority source.

        Args:
            key: Setting key to retrieve
            default: Value returned when no source defines the key

        Returns:
            The resolved value or ``default``
        """
        value = self._overrides.get(key, _MISSING)
        if value is not _MISSING:
            return value

        django_value = self._get_django_setting(key)
        if django_value is not _MISSING:
            return django_value

        return LIBRARY_DEFAULTS.get(key, default)

    def is_set(self, key: str) -> bool:
        """Return True when ``key`` is explicitly configured (not a library default)."""
        if key in self._overrides:
            return self._overrides[key] is not None
        value = self._get_django_setting(key)
        return value is not _MISSING and value is not None

    def set(self, key: str, value: Any) -> None:
        """
        Set a setting value (runtime only, not persistent).

        Args:
            key: Setting key to set
            value: Value to set
        """
        with self._lock:
            self._overrides[key] = value
            self.version += 1

    def clear(self) -> None:
        """Drop every runtime override."""
        with self._lock:
            self._overrides.clear()
            self.version += 1

    def _get_django_setting(self, key: str) -> Any:
        try:
            configured = getattr(settings, SETTINGS_NAME, None) or {}
        except Exception as exc:
            logger.debug("Unable to read %s: %s", SETTINGS_NAME, exc)
            return _MISSING
        if not isinstance(configured, dict):
            return _MISSING
        return configured.get(key, _MISSING)


class DjangoHostSettings:
    """
    Native settings of the host GraphQL server.

    The host exposes its switches through the ``QUERY_SHIELD_HOST_SETTINGS``
    Django setting (keys such as ``query_depth_enabled`` or ``batch_limit``).
    When that setting is absent the host is treated as unavailable and the
    resolver falls back to local values.
    """

    def _settings(self) -> Optional[Dict[str, Any]]:
        try:
            host = getattr(settings, HOST_SETTINGS_NAME, None)
        except Exception as exc:
            logger.debug("Unable to read %s: %s", HOST_SETTINGS_NAME, exc)
            return None
        return host if isinstance(host, dict) else None

    def is_available(self) -> bool:
        return self._settings() is not None

    def get(self, key: str, default: Any = None) -> Any:
        host = self._settings()
        if host is None:
            return default
        return host.get(key, default)
