"""Mapping of admission errors to HTTP responses.

The admission core raises transport-agnostic exceptions; this module gives
each one a status code and an ErrorResponse body.
"""

import math

from fastapi.responses import JSONResponse

from tollgate.admission.exceptions import (
    ConfigurationError,
    ExtractionError,
    MissingCallerError,
    RateLimitedError,
    StoreUnavailableError,
    TollgateError,
)
from tollgate.api.models.errors import ErrorBody, ErrorCode, ErrorResponse

# Most specific classes first
ERROR_STATUS: list[tuple[type[TollgateError], int, ErrorCode]] = [
    (RateLimitedError, 429, ErrorCode.RATE_LIMIT_EXCEEDED),
    (StoreUnavailableError, 503, ErrorCode.STORE_UNAVAILABLE),
    (ExtractionError, 400, ErrorCode.INVALID_REQUEST),
    (MissingCallerError, 400, ErrorCode.INVALID_REQUEST),
    (ConfigurationError, 500, ErrorCode.INTERNAL_ERROR),
]


def status_for(exc: TollgateError) -> tuple[int, ErrorCode]:
    """Get the HTTP status and error code of an admission error."""
    for error_type, status_code, error_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code, error_code
    return 500, ErrorCode.INTERNAL_ERROR


def error_response(exc: TollgateError) -> JSONResponse:
    """Render an admission error as a JSON response.

    Rate limited responses carry a Retry-After header rounded up to whole
    seconds.
    """
    status_code, error_code = status_for(exc)
    retry_after = exc.retry_after if isinstance(exc, RateLimitedError) else None

    body = ErrorResponse(
        error=ErrorBody(code=error_code, message=exc.message, retry_after=retry_after)
    )
    headers = {}
    if retry_after is not None:
        headers["Retry-After"] = str(max(1, math.ceil(retry_after)))

    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json"),
        headers=headers,
    )


def invalid_request(message: str) -> JSONResponse:
    """Render a 400 response for requests that never reached the guard."""
    body = ErrorResponse(error=ErrorBody(code=ErrorCode.INVALID_REQUEST, message=message))
    return JSONResponse(status_code=400, content=body.model_dump(mode="json"))
