"""Typed errors raised by the Wild Apricot adapter."""

from __future__ import annotations


class WildApricotError(RuntimeError):
    """Base error for Wild Apricot adapter failures."""


class WildApricotConfigError(WildApricotError):
    """Raised when required configuration is missing or malformed."""


class ProductionSafetyError(WildApricotError):
    """Raised when a live import is attempted in production without explicit opt-in."""


class TokenError(WildApricotError):
    """Raised when the OAuth endpoint is unreachable or rejects the credentials."""

    def __init__(self, message: str, *, status_code: int | None = None, body: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ApiResponseError(WildApricotError):
    """Base for errors tied to an API response (or the lack of one)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        body: str | None = None,
        url: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.url = url


class ApiError(ApiResponseError):
    """Non-retryable API response (4xx other than 429)."""


class RequestFailed(ApiResponseError):
    """Raised when a retryable failure (5xx or network) persists past the retry budget."""


class RateLimitExceeded(RequestFailed):
    """Raised when HTTP 429 responses persist past the retry budget."""


class AsyncQueryFailed(WildApricotError):
    """Raised when Wild Apricot reports an asynchronous query as Failed."""

    def __init__(self, message: str, *, details: object | None = None) -> None:
        super().__init__(message)
        self.details = details


class AsyncQueryTimeout(WildApricotError):
    """Raised when an asynchronous query does not complete within the poll budget."""

    def __init__(self, message: str, *, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts
