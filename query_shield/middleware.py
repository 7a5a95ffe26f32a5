from django.http import HttpRequest, HttpResponse
from django.utils.deprecation import MiddlewareMixin

from .config_proxy import SettingsConfigSource

GRAPHQL_SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    # GraphQL responses are never cacheable
    "Cache-Control": "no-store, no-cache, must-revalidate, max-age=0",
    "Pragma": "no-cache",
    "Expires": "Thu, 01 Jan 1970 00:00:00 GMT",
}


class GraphQLSecurityHeadersMiddleware(MiddlewareMixin):
    """Adds hardening and no-cache headers to GraphQL endpoint responses."""

    def __init__(self, get_response=None):
        super().__init__(get_response)
        self.source = SettingsConfigSource()

    def is_graphql_request(self, request: HttpRequest) -> bool:
        marker = self.source.get("graphql_path", "/graphql") or "/graphql"
        return marker in (request.path or "")

    def process_response(self, request: HttpRequest, response: HttpResponse) -> HttpResponse:
        if self.is_graphql_request(request):
            for header, value in GRAPHQL_SECURITY_HEADERS.items():
                response[header] = value
        return response
