"""Response models for the HTTP admission adapter."""

from enum import Enum

from pydantic import BaseModel


class ErrorCode(str, Enum):
    """Machine-readable error codes for rejected requests."""

    INVALID_REQUEST = "INVALID_REQUEST"
    """Body is not JSON, the caller is missing, or selectors did not resolve."""

    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    """The caller has exhausted its quota."""

    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"
    """Admission could not be evaluated and the operation fails closed."""

    INTERNAL_ERROR = "INTERNAL_ERROR"
    """An unexpected internal error occurred."""


class ErrorBody(BaseModel):
    """Error body content for API error responses."""

    code: ErrorCode
    """Machine-readable error code."""

    message: str
    """Human-readable error message."""

    retry_after: float | None = None
    """Seconds until the caller may retry, for rate limited requests."""


class ErrorResponse(BaseModel):
    """Standard error response format.

    Example:
        {
            "error": {
                "code": "RATE_LIMIT_EXCEEDED",
                "message": "Rate limit exceeded for operation 'submitResult'",
                "retry_after": 0.4
            }
        }
    """

    error: ErrorBody


class DuplicateResponse(BaseModel):
    """Idempotent-success answer for content that was already admitted."""

    status: str = "accepted"
    duplicate: bool = True
    operation_id: str
    fingerprint: str | None = None
