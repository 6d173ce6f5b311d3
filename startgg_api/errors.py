from __future__ import annotations


class StartGGError(Exception):
    """Base exception for bracket service failures."""

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


class RateLimitError(StartGGError):
    """Raised when the bracket service keeps rejecting us for rate limiting."""

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message, "RATE_LIMIT")
        self.retry_after = retry_after


class AuthError(StartGGError):
    """Raised on 401/403 responses; retrying will not help."""

    def __init__(self, message: str) -> None:
        super().__init__(message, "AUTH_ERROR")


class GraphQLError(StartGGError):
    def __init__(self, message: str, errors: list[dict[str, object]]) -> None:
        super().__init__(message, "GRAPHQL_ERROR")
        self.errors = errors


_RATE_LIMIT_MARKERS = ("rate limit", "too many requests", "429")


def is_rate_limit_error(exc: BaseException) -> bool:
    if isinstance(exc, RateLimitError):
        return True
    status = getattr(exc, "status", None)
    if status == 429:
        return True
    message = str(exc).lower()
    return any(marker in message for marker in _RATE_LIMIT_MARKERS)


__all__ = [
    "StartGGError",
    "RateLimitError",
    "AuthError",
    "GraphQLError",
    "is_rate_limit_error",
]
