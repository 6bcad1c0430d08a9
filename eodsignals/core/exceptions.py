"""Custom exceptions with structured error payloads."""

from __future__ import annotations

from typing import Any


class AppException(Exception):
    """Base application exception with structured error response."""

    error_code: str = "INTERNAL_ERROR"
    message: str = "An unexpected error occurred"
    retryable: bool = False

    def __init__(
        self,
        message: str | None = None,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
        retryable: bool | None = None,
    ):
        self.message = message or self.message
        self.error_code = error_code or self.error_code
        self.details = details or {}
        if retryable is not None:
            self.retryable = retryable
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a problem+json style payload."""
        return {
            "error": self.error_code,
            "message": self.message,
            "retryable": self.retryable,
            **({"details": self.details} if self.details else {}),
        }


class NotFoundError(AppException):
    """Resource not found."""

    error_code = "NOT_FOUND"
    message = "Resource not found"


class ValidationError(AppException):
    """Input failed validation."""

    error_code = "VALIDATION_ERROR"
    message = "Validation failed"


class ConfigurationError(AppException):
    """Invalid configuration (market code, risk profile, settings).

    Raised synchronously; callers must never fall back to a default.
    """

    error_code = "CONFIGURATION_ERROR"
    message = "Invalid configuration"


class UpstreamUnavailableError(AppException):
    """Storage or prior-snapshot fetch failed.

    Recoverable per symbol: the universe pass records it and moves on.
    """

    error_code = "UPSTREAM_UNAVAILABLE"
    message = "Upstream data source unavailable"
    retryable = True


class ExternalServiceError(AppException):
    """Market data provider error."""

    error_code = "EXTERNAL_SERVICE_ERROR"
    message = "External service temporarily unavailable"
    retryable = True
