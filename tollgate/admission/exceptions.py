"""Admission exception hierarchy.

All errors raised by the admission core inherit from TollgateError.
Configuration problems surface at setup; extraction and store problems
surface per request and are classified by the guard's explicit policies.
"""


class TollgateError(Exception):
    """Base exception for all admission errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ConfigurationError(TollgateError, ValueError):
    """Raised when a policy, limiter or selector is invalid.

    Only raised while building policies, extractors and guards, never while
    evaluating a request.
    """


class ExtractionError(TollgateError):
    """Raised when a declared field selector does not resolve on a payload."""

    def __init__(self, selector: str, reason: str) -> None:
        super().__init__(f"Selector '{selector}' did not resolve: {reason}")
        self.selector = selector
        self.reason = reason


class MissingCallerError(TollgateError):
    """Raised when a request carries no caller id and the policy names no caller field."""


class StoreUnavailableError(TollgateError):
    """Raised when the shared store could not complete the atomic step."""


class AdmissionRejectedError(TollgateError):
    """Base for rejections raised by AdmissionGuard.run."""


class RateLimitedError(AdmissionRejectedError):
    """Raised when a caller has exhausted its quota."""

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after
