"""Application error classes.

Services raise these; the exception handler registered in ``app.main`` maps
them to a JSON body of the form::

    {"error": {"code": "...", "message": "...", "details": {...}}}
"""

from typing import Any, Optional


class AppError(Exception):
    """Base class for domain errors with an HTTP status attached."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        self.message = message
        self.details = details
        super().__init__(message)

    def to_dict(self) -> dict:
        body: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return {"error": body}


class ValidationError(AppError):
    """Missing or malformed input (400)."""

    code = "VALIDATION_ERROR"
    status_code = 400


class UnauthorizedError(AppError):
    """Credential missing, malformed, or not confirmed by the identity provider (401)."""

    code = "UNAUTHORIZED"
    status_code = 401

    def __init__(self, message: str = "Authentication required", details=None) -> None:
        super().__init__(message, details)


class ForbiddenError(AppError):
    """Authenticated but not permitted (403)."""

    code = "FORBIDDEN"
    status_code = 403

    def __init__(self, message: str = "Access denied", details=None) -> None:
        super().__init__(message, details)


class NotFoundError(AppError):
    """Resource not found (404)."""

    code = "NOT_FOUND"
    status_code = 404


class TokenError(AppError):
    """Base for token redemption failures. All of them are terminal for the token."""


class TokenNotFoundError(TokenError):
    code = "TOKEN_NOT_FOUND"
    status_code = 404

    def __init__(self, message: str = "Invalid token", details=None) -> None:
        super().__init__(message, details)


class TokenExpiredError(TokenError):
    code = "TOKEN_EXPIRED"
    status_code = 410

    def __init__(self, message: str = "Token expired", details=None) -> None:
        super().__init__(message, details)


class TokenAlreadyUsedError(TokenError):
    code = "TOKEN_ALREADY_USED"
    status_code = 409

    def __init__(self, message: str = "Token already used", details=None) -> None:
        super().__init__(message, details)


class ProviderError(AppError):
    """An external provider (email, identity) failed or timed out (502).

    Safe to retry at the caller's discretion.
    """

    code = "PROVIDER_ERROR"
    status_code = 502


class ConfigurationError(AppError):
    """Required deployment configuration is missing (500)."""

    code = "CONFIGURATION_ERROR"
    status_code = 500


class RateLimitError(AppError):
    """Too many requests from one client (429)."""

    code = "RATE_LIMITED"
    status_code = 429

    def __init__(self, retry_after: int) -> None:
        self.retry_after = retry_after
        super().__init__(
            f"Too many requests. Please try again in {retry_after} seconds.",
            details={"retryAfter": retry_after},
        )
