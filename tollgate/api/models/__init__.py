"""API response models."""

from tollgate.api.models.errors import (
    DuplicateResponse,
    ErrorBody,
    ErrorCode,
    ErrorResponse,
)

__all__ = ["DuplicateResponse", "ErrorBody", "ErrorCode", "ErrorResponse"]
