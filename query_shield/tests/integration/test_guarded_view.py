"""
Integration tests for GuardedGraphQLView and the security headers middleware.
"""

import json

import graphene
import pytest
from django.http import HttpResponse
from django.test import RequestFactory

from query_shield.config_proxy import SettingsConfigSource
from query_shield.middleware import GraphQLSecurityHeadersMiddleware
from query_shield.rate_limiting import MemoryCounterStore, RateLimiter
from query_shield.security.events import EventBus, MemorySink
from query_shield.security.graphql.config import EffectiveConfig
from query_shield.security.graphql.guard import QueryGuard
from query_shield.services import reset_query_guard, set_query_guard_factory
from query_shield.views import GuardedGraphQLView

pytestmark = pytest.mark.integration


class Query(graphene.ObjectType):
    hello = graphene.String()

    def resolve_hello(root, info):
        return "world"


schema = graphene.Schema(query=Query)


class _ResolverStub:
    def __init__(self, config):
        self.config = config
        self.source = SettingsConfigSource()

    def resolve(self):
        return self.config


class _DenyAllLimiter:
    def allow(self, key, config=None, *, user_agent=None, limit=None):
        return False


@pytest.fixture
def sink():
    return MemorySink()


def _guard(sink, limiter=None, **config):
    return QueryGuard(
        _ResolverStub(EffectiveConfig(**config)),
        limiter=limiter or RateLimiter(MemoryCounterStore()),
        events=EventBus().add_sink(sink),
    )


def _post(view, payload):
    request = RequestFactory().post(
        "/graphql/",
        data=json.dumps(payload),
        content_type="application/json",
        REMOTE_ADDR="8.8.8.8",
    )
    return view(request)


def test_guard_passed_to_view_is_used(sink):
    guard = _guard(sink)

    view = GuardedGraphQLView(schema=schema, guard=guard)

    assert view.get_guard() is guard
    assert GuardedGraphQLView(schema=schema).guard is None


def test_allowed_query_executes(sink):
    view = GuardedGraphQLView.as_view(schema=schema, guard=_guard(sink))

    response = _post(view, {"query": "{ hello }"})

    assert response.status_code == 200
    assert json.loads(response.content) == {"data": {"hello": "world"}}


def test_rejected_query_returns_single_error(sink):
    view = GuardedGraphQLView.as_view(schema=schema, guard=_guard(sink, alias_limit=2))

    response = _post(view, {"query": "{ a: hello b: hello c: hello }"})
    body = json.loads(response.content)

    assert response.status_code == 400
    assert "data" not in body
    assert len(body["errors"]) == 1
    assert body["errors"][0]["message"] == "Query contains too many aliases (3). Maximum allowed: 2"
    assert body["errors"][0]["extensions"]["reason"] == "too_many_aliases"
    assert len(sink.of_type("query.blocked.aliases")) == 1


def test_rate_limited_request_returns_429(sink):
    view = GuardedGraphQLView.as_view(schema=schema, guard=_guard(sink, limiter=_DenyAllLimiter()))

    response = _post(view, {"query": "{ hello }"})

    assert response.status_code == 429
    assert json.loads(response.content)["errors"][0]["extensions"]["code"] == "RATE_LIMITED"


def test_slow_query_keeps_data_and_gets_timeout_error(sink, monkeypatch):
    ticks = iter([100.0, 112.0])
    monkeypatch.setattr("query_shield.views.monotonic", lambda: next(ticks))
    view = GuardedGraphQLView.as_view(schema=schema, guard=_guard(sink, query_timeout_seconds=5))

    response = _post(view, {"query": "{ hello }"})
    body = json.loads(response.content)

    assert response.status_code == 200
    assert body["data"] == {"hello": "world"}
    assert [error["extensions"]["code"] for error in body["errors"]] == ["QUERY_TIMEOUT"]


def test_batch_over_limit_rejected(sink):
    view = GuardedGraphQLView.as_view(schema=schema, guard=_guard(sink, batch_limit=2), batch=True)

    response = _post(view, [{"query": "{ hello }", "id": str(i)} for i in range(3)])

    assert response.status_code == 400
    assert json.loads(response.content)["errors"][0]["message"] == (
        "Batch contains too many operations (3). Maximum allowed: 2"
    )


def test_batch_within_limit_executes_each_operation(sink):
    view = GuardedGraphQLView.as_view(schema=schema, guard=_guard(sink, batch_limit=2), batch=True)

    response = _post(view, [{"query": "{ hello }", "id": str(i)} for i in range(2)])
    body = json.loads(response.content)

    assert response.status_code == 200
    assert [item["data"] for item in body] == [{"hello": "world"}, {"hello": "world"}]


def test_view_uses_registered_guard_factory(sink):
    guard = _guard(sink, alias_limit=0)
    set_query_guard_factory(lambda: guard)
    try:
        view = GuardedGraphQLView.as_view(schema=schema)
        response = _post(view, {"query": "{ greeting: hello }"})
    finally:
        set_query_guard_factory(None)
        reset_query_guard()

    assert response.status_code == 400


def test_security_headers_added_to_graphql_responses():
    middleware = GraphQLSecurityHeadersMiddleware(lambda request: HttpResponse("ok"))
    factory = RequestFactory()

    graphql_response = middleware(factory.get("/graphql/"))
    other_response = middleware(factory.get("/admin/"))

    assert graphql_response["X-Content-Type-Options"] == "nosniff"
    assert graphql_response["X-Frame-Options"] == "DENY"
    assert graphql_response["Cache-Control"] == "no-store, no-cache, must-revalidate, max-age=0"
    assert graphql_response["Expires"] == "Thu, 01 Jan 1970 00:00:00 GMT"
    assert "X-XSS-Protection" not in other_response
