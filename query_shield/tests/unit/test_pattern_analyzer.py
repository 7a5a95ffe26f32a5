"""
Unit tests for PatternAnalyzer and the text heuristics behind it.
"""

import re

import pytest

from query_shield.security.graphql.analyzer import (
    PatternAnalyzer,
    brace_run,
    count_aliases,
    count_directives,
    estimate_complexity,
    has_duplicate_fields,
    is_introspection,
    nesting_depth,
)
from query_shield.security.graphql.config import EffectiveConfig

pytestmark = pytest.mark.unit

ELEVEN_ALIASES = "query { a:x b:x c:x d:x e:x f:x g:x h:x i:x j:x k:x }"


class TestPatternAnalyzer:
    @pytest.fixture
    def analyzer(self):
        return PatternAnalyzer()

    def test_analyze_is_pure(self, analyzer):
        query = 'query Feed { posts(first: 20, where: {status: "draft"}) { id title @include(if: $full) } }'

        assert analyzer.analyze(query) == analyzer.analyze(query)

    def test_empty_query_signature(self, analyzer):
        signature = analyzer.analyze("")

        assert signature.length == 0
        assert signature.alias_count == 0
        assert signature.estimated_complexity == 1
        assert signature.exceeds_depth(1) is False

    def test_signature_fields(self, analyzer):
        signature = analyzer.analyze(ELEVEN_ALIASES)

        assert signature.length == len(ELEVEN_ALIASES)
        assert signature.alias_count == 11
        assert signature.directive_count == 0
        assert signature.nesting_depth == 1
        assert signature.is_introspection is False
        assert signature.has_duplicate_fields is False

    def test_suspicious_markers(self, analyzer):
        config = EffectiveConfig()
        ten_aliases = "query { a:x b:x c:x d:x e:x f:x g:x h:x i:x j:x }"
        deep = "{ __schema { types { fields { name } } } }"

        assert "many_aliases" in analyzer.suspicious_markers(ten_aliases, config)
        assert "deep_introspection" in analyzer.suspicious_markers(deep, config)
        assert analyzer.suspicious_markers("{ viewer { id } }", config) == []
        assert analyzer.is_suspicious("", config) is False

    def test_many_directives_marker_threshold(self, analyzer):
        config = EffectiveConfig(directive_limit=15)

        below = "{ a " + "@skip " * 6 + "}"
        at = "{ a " + "@skip " * 7 + "}"

        assert "many_directives" not in analyzer.suspicious_markers(below, config)
        assert analyzer.suspicious_markers(at, config) == ["many_directives"]

    def test_many_directives_marker_has_a_floor(self, analyzer):
        config = EffectiveConfig(directive_limit=2)

        assert analyzer.suspicious_markers("{ a @x @y }", config) == []
        assert analyzer.suspicious_markers("{ a @x @y @z }", config) == ["many_directives"]

    def test_long_query_marker_threshold(self, analyzer):
        config = EffectiveConfig(query_complexity_limit=10)

        below = "{ " + "x" * 495 + " }"
        at = "{ " + "x" * 496 + " }"

        assert len(below) == 499
        assert len(at) == 500
        assert analyzer.suspicious_markers(below, config) == []
        assert analyzer.suspicious_markers(at, config) == ["long_query"]

    def test_many_fields_marker(self, analyzer):
        config = EffectiveConfig()
        wide = "{ " + " ".join(f"field{i}" for i in range(60)) + " }"

        assert analyzer.suspicious_markers(wide, config) == ["many_fields"]


def test_alias_and_directive_counts():
    assert count_aliases(ELEVEN_ALIASES) == 11
    assert count_aliases("{ user(id: 1) { name } }") == 1
    assert count_directives("{ a @include(if: $x) b @skip(if: $y) }") == 2


@pytest.mark.parametrize(
    "query",
    ["{ __schema { types { name } } }", "{ __TYPE(name: \"User\") { name } }", "{ me { __typename } }"],
)
def test_introspection_markers(query):
    assert is_introspection(query) is True


def test_plain_query_is_not_introspection():
    assert is_introspection("{ schema { type } }") is False


@pytest.mark.parametrize(
    "query",
    [
        "{ a }",
        "{ a { b { c } } }",
        "{ a { b } c { d { e { f } } } }",
        "{{{ } {{{{ }",
        "query { x { y } } { { { z",
        "no braces at all",
    ],
)
def test_brace_run_matches_repeated_brace_pattern(query):
    for count in range(1, 7):
        pattern = r"\{[^}]*" * count
        assert (re.search(pattern, query) is not None) == (brace_run(query) >= count)


def test_nesting_depth_ignores_string_literals():
    assert nesting_depth('{ search(text: "{{{{") { id } }') == 2
    assert nesting_depth("{ a { b } }") == 2


@pytest.mark.parametrize(
    "query",
    [
        "query { friends { friends { friends { id } } } }",
        "{ user { user user } }",
        "viewer name { name name }",
    ],
)
def test_duplicate_fields_detected(query):
    assert has_duplicate_fields(query) is True


@pytest.mark.parametrize(
    "query",
    [
        "query { user { id name posts { title } } }",
        "{ posts { title } }",
        "{ a { b } a { b } }",
        "",
    ],
)
def test_duplicate_fields_not_detected(query):
    assert has_duplicate_fields(query) is False


def test_complexity_of_minimal_query():
    # base + one field + one nesting level
    assert estimate_complexity("{ a }") == 4


def test_complexity_counts_connections_filters_and_fragments():
    base = estimate_complexity("query { users { id name } }")

    assert base == 8
    assert estimate_complexity("query { users(first: 25) { id name } }") == base + 3
    assert estimate_complexity("query { users(where: {active: true}) { id name } }") == base + 1
    assert estimate_complexity("query { users { ...UserParts } }") > estimate_complexity("query { users { id } }")


def test_complexity_grows_with_page_size():
    small = estimate_complexity("{ posts(last: 10) { id } }")
    large = estimate_complexity("{ posts(last: 100) { id } }")

    assert large - small == 9
