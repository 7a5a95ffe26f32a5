"""
GraphQL errors raised or appended by the query guard.
"""

from typing import Any, Dict, Optional

from graphql import GraphQLError

QUERY_TIMEOUT_CODE = "QUERY_TIMEOUT"


class GuardRejection(GraphQLError):
    """A request refused before execution."""

    code = "QUERY_REJECTED"

    def __init__(self, message: str, reason: str, extensions: Optional[Dict[str, Any]] = None):
        super().__init__(
            message,
            extensions={"code": self.code, "reason": reason, **(extensions or {})},
        )
        self.reason = reason


class ValidationRejected(GuardRejection):
    """The query text failed one of the pattern checks."""

    code = "QUERY_VALIDATION_FAILED"


class RateLimited(GuardRejection):
    code = "RATE_LIMITED"


class TimeoutExceeded(GraphQLError):
    """
    Advisory timeout marker.

    Never raised: execution cannot be cancelled once started, so the error is
    appended to the finished response instead.
    """

    def __init__(self, elapsed_seconds: float, timeout_seconds: int):
        super().__init__(
            f"Query execution time exceeded the limit of {timeout_seconds} seconds.",
            extensions={
                "code": QUERY_TIMEOUT_CODE,
                "elapsed_seconds": round(float(elapsed_seconds), 3),
                "timeout_seconds": timeout_seconds,
            },
        )
        self.elapsed_seconds = elapsed_seconds
        self.timeout_seconds = timeout_seconds
