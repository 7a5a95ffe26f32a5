"""
Management command reporting the effective GraphQL security configuration.
"""

import json
from typing import Any, Dict

from django.core.management.base import BaseCommand
from django.core.serializers.json import DjangoJSONEncoder

from ...config_proxy import SettingsConfigSource
from ...security.graphql.config import ConfigResolver
from ...services import get_query_guard


class Command(BaseCommand):
    """Show the resolved GraphQL limits, optionally as they would be in headless mode."""

    help = "Show the effective GraphQL security configuration and recommendations"

    def add_arguments(self, parser):
        parser.add_argument(
            "--json",
            action="store_true",
            help="Print the report as JSON",
        )
        parser.add_argument(
            "--preview-headless",
            choices=["on", "off"],
            help=(
                "Report the limits as they would resolve with headless mode on or off; "
                "the configured setting is not changed"
            ),
        )

    def handle(self, *args, **options):
        guard = get_query_guard()
        resolver = guard.resolver

        preview = options.get("preview_headless")
        if preview:
            resolver = ConfigResolver(
                SettingsConfigSource({"headless_mode": preview == "on"}),
                host_settings=resolver.host_settings,
            )

        report = resolver.integration_status()
        report["timeout"] = resolver.timeout_config()
        if guard.statistics is not None:
            report["blocked_last_window"] = guard.statistics.total_blocked()

        if options["json"]:
            self.stdout.write(json.dumps(report, indent=2, cls=DjangoJSONEncoder))
            return

        self._display_report(report)

    def _display_report(self, report: Dict[str, Any]):
        config = report["current_config"]
        level = report["security_level"]
        style = {
            "high": self.style.SUCCESS,
            "medium": self.style.WARNING,
        }.get(level, self.style.ERROR)

        self.stdout.write(self.style.MIGRATE_HEADING("GraphQL security status"))
        self.stdout.write(f"Security level: {style(level.upper())}")
        self.stdout.write(f"Headless mode: {'on' if config['headless_mode'] else 'off'}")
        self.stdout.write(f"Host settings available: {'yes' if report['host_available'] else 'no'}")

        self.stdout.write(self.style.MIGRATE_HEADING("Limits"))
        for key in (
            "query_depth_limit",
            "query_complexity_limit",
            "query_timeout_seconds",
            "alias_limit",
            "directive_limit",
            "field_duplicate_limit",
            "batch_limit",
        ):
            self.stdout.write(f"  {key}: {config[key]}")

        rate = report["rate_limiting"]
        self.stdout.write(self.style.MIGRATE_HEADING("Rate limiting"))
        self.stdout.write(f"  requests_per_minute: {rate['requests_per_minute']}")
        self.stdout.write(f"  burst_limit: {rate['burst_limit']}")

        if "blocked_last_window" in report:
            self.stdout.write(f"Blocked queries (current window): {report['blocked_last_window']}")

        if report["recommendations"]:
            self.stdout.write(self.style.MIGRATE_HEADING("Recommendations"))
            for item in report["recommendations"]:
                writer = self.style.WARNING if item["level"] == "warning" else self.style.NOTICE
                self.stdout.write(writer(f"  - {item['message']}"))
