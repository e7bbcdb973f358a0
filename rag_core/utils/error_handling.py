"""Custom exceptions and helpers for consistent error responses."""

import json
from typing import Any, Dict


class AppError(Exception):
    """Base class for application errors."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(AppError):
    """Raised when a requested resource is missing."""

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message, status_code=404)


class AuthorizationError(AppError):
    """Raised when the caller may not act on the requested resource."""

    def __init__(self, message: str = "Not authorized"):
        super().__init__(message, status_code=403)


class ValidationError(AppError):
    """Raised when input validation fails."""

    def __init__(self, message: str = "Invalid input"):
        super().__init__(message, status_code=422)


class QuotaExceededError(AppError):
    """Raised before any write when the AI credit allowance is used up."""

    def __init__(self, current: int, limit: int):
        super().__init__(
            f"AI credit limit reached ({current}/{limit}). "
            "Upgrade your plan or wait for the next billing period.",
            status_code=429,
        )
        self.current = current
        self.limit = limit


class UpstreamServiceError(AppError):
    """Embedding or completion service call failed."""

    def __init__(self, message: str = "Upstream service failed"):
        super().__init__(message, status_code=502)


class MalformedResponseError(UpstreamServiceError):
    """Completion service returned a shape the caller cannot use."""

    def __init__(self, message: str = "Malformed response from completion service"):
        super().__init__(message)


def to_response(error: AppError) -> Dict[str, Any]:
    """Convert an AppError into a Lambda proxy integration response."""
    body: Dict[str, Any] = {"message": str(error), "status": "error"}
    if isinstance(error, QuotaExceededError):
        body.update({"current": error.current, "limit": error.limit})
    return {
        "statusCode": error.status_code,
        "headers": {"Content-Type": "application/json"},
        "body": json.dumps(body),
    }
