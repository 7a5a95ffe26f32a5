"""
Django app configuration for Query Shield.
"""

import logging

from django.apps import AppConfig as BaseAppConfig
from django.conf import settings

logger = logging.getLogger(__name__)


class AppConfig(BaseAppConfig):
    """Django app configuration for Query Shield."""

    name = "query_shield"
    verbose_name = "Query Shield"
    label = "query_shield"

    def ready(self):
        """Register signal receivers and validate settings."""
        from .config_proxy import SETTINGS_NAME
        from .security.graphql import config  # noqa: F401

        configured = getattr(settings, SETTINGS_NAME, None)
        if configured is not None and not isinstance(configured, dict):
            logger.warning(
                "%s should be a dict, got %s; library defaults apply",
                SETTINGS_NAME,
                type(configured).__name__,
            )
