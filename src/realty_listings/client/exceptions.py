"""Listings API client exceptions."""

from __future__ import annotations


class ListingsAPIError(Exception):
    """Base exception for listings API errors.

    Attributes:
        message: Human-readable error message
        status_code: HTTP status code (if applicable)
        response_body: Decoded response body (if available)
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: dict | str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.response_body = response_body

    def __str__(self) -> str:
        if self.status_code:
            return f"[{self.status_code}] {self.message}"
        return self.message


class ListingsAuthenticationError(ListingsAPIError):
    """Raised when the API rejects the caller (401 Unauthorized).

    Attributes:
        reason: Rejection reason from the API (no_bearer, invalid_token, not_privileged)
    """

    def __init__(
        self,
        message: str = "Not authorized. Log in with an owner or editor account.",
        status_code: int = 401,
        response_body: dict | str | None = None,
    ) -> None:
        super().__init__(message, status_code, response_body)
        self.reason = response_body.get("reason") if isinstance(response_body, dict) else None


class ListingNotFoundError(ListingsAPIError):
    """Raised when a listing does not exist (404 Not Found)."""

    def __init__(
        self,
        message: str = "Listing not found.",
        status_code: int = 404,
        response_body: dict | str | None = None,
    ) -> None:
        super().__init__(message, status_code, response_body)


class ListingsValidationError(ListingsAPIError):
    """Raised when the API rejects the request body (400 Bad Request)."""

    def __init__(
        self,
        message: str = "Request validation failed.",
        status_code: int = 400,
        response_body: dict | str | None = None,
    ) -> None:
        super().__init__(message, status_code, response_body)


class ListingsRateLimitError(ListingsAPIError):
    """Raised when a submission is rate limited (429 Too Many Requests).

    Attributes:
        retry_after: Seconds to wait before retrying (if provided by the API)
    """

    def __init__(
        self,
        message: str = "Too many requests.",
        status_code: int = 429,
        response_body: dict | str | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message, status_code, response_body)
        self.retry_after = retry_after
