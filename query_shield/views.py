"""
GraphQL view guarded by Query Shield.

``GuardedGraphQLView`` extends graphene-django's ``GraphQLView``: each
operation is inspected before execution and the finished response passes
through ``QueryGuard.finalize``.
"""

import json
import logging
from time import monotonic
from typing import Any, Dict, Optional

from django.http import HttpRequest
from django.utils.decorators import method_decorator
from django.views.decorators.csrf import csrf_exempt
from graphene_django.views import GraphQLView, HttpError, HttpResponseBadRequest

from .rate_limiting import get_client_ip
from .security.graphql.guard import GuardDecision, QueryGuard
from .services import get_query_guard

logger = logging.getLogger(__name__)


@method_decorator(csrf_exempt, name="dispatch")
class GuardedGraphQLView(GraphQLView):
    """
    GraphQL view enforcing query limits, rate limits and the advisory timeout.

    Rejected operations are answered with a single error and no data; the
    status is 429 for rate limiting and 400 for everything else.
    """

    guard: Optional[QueryGuard] = None

    def __init__(self, *args, guard: Optional[QueryGuard] = None, **kwargs):
        super().__init__(*args, **kwargs)
        if guard is not None:
            self.guard = guard

    def get_guard(self) -> QueryGuard:
        return self.guard if self.guard is not None else get_query_guard()

    def parse_body(self, request: HttpRequest):
        """Parse the request body and enforce the batch size limit."""
        data = super().parse_body(request)
        if self.batch and isinstance(data, list):
            decision = self.get_guard().check_batch(len(data), get_client_ip(request))
            if not decision.allow:
                raise HttpError(HttpResponseBadRequest(), decision.detail)
        return data

    def get_response(self, request: HttpRequest, data: Any, show_graphiql: bool = False):
        guard = self.get_guard()
        query, _variables, operation_name, operation_id = self.get_graphql_params(request, data)
        client_identity = get_client_ip(request)

        if query:
            decision = guard.inspect(
                query,
                client_identity,
                user_agent=request.META.get("HTTP_USER_AGENT"),
            )
            if not decision.allow:
                return self._rejection_response(request, decision, operation_id, show_graphiql)

        started = monotonic()
        result, status_code = super().get_response(request, data, show_graphiql)
        elapsed = monotonic() - started

        if result is None:
            return result, status_code

        payload = json.loads(result)
        annotated = guard.finalize(
            payload,
            elapsed,
            query=query,
            client_identity=client_identity,
            operation_name=operation_name,
        )
        if annotated is not payload:
            # The timeout error has no path; keep data, which the base view would drop
            result = self.json_encode(request, annotated, pretty=show_graphiql)
        return result, status_code

    def _rejection_response(
        self,
        request: HttpRequest,
        decision: GuardDecision,
        operation_id: Any,
        show_graphiql: bool,
    ):
        response: Dict[str, Any] = {"errors": [decision.as_error().formatted]}
        if self.batch:
            response["id"] = operation_id
            response["status"] = decision.status_code
        return self.json_encode(request, response, pretty=show_graphiql), decision.status_code
