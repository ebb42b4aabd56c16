"""
Typed errors raised by the stores and the state machine.

The HTTP boundary maps each one to a stable machine-readable code. Anything
that is not an AppError is reported as INTERNAL and only logged.
"""
from typing import Any, Optional


class AppError(Exception):
    """Base class for errors that carry a stable code and HTTP status."""
    code = "INTERNAL"
    status_code = 500

    def __init__(self, message: str, details: Optional[Any] = None):
        self.message = message
        self.details = details
        super().__init__(self.message)


class ValidationError(AppError):
    """Malformed input, rejected before any state change."""
    code = "VALIDATION"
    status_code = 400


class UnauthorizedError(AppError):
    code = "UNAUTHORIZED"
    status_code = 401


class ForbiddenError(AppError):
    code = "FORBIDDEN"
    status_code = 403


class NotFoundError(AppError):
    """
    Entity absent or owned by another organization.

    Both cases share this error so callers cannot discover other tenants.
    """
    code = "NOT_FOUND"
    status_code = 404


class ConflictError(AppError):
    """Illegal state transition."""
    code = "CONFLICT"
    status_code = 409


class RateLimitedError(AppError):
    """Admission denied. `result` is the limiter verdict used for retry-after."""
    code = "RATE_LIMITED"
    status_code = 429

    def __init__(self, message: str, result):
        super().__init__(message, details={"reset_ms": result.reset_ms})
        self.result = result


class GenerationTimeoutError(Exception):
    """A generation attempt overran its wall-clock deadline."""

    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(f"TIMEOUT: generation exceeded {timeout_seconds:g}s")
