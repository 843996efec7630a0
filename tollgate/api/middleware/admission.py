"""Admission middleware for protected ingestion endpoints.

Applies an AdmissionGuard to every write request on a protected path:
- ALLOW: the request is passed on
- DUPLICATE: 200 idempotent-success answer, the handler is not called
- RATE_LIMITED: 429 with Retry-After
- UNKNOWN: passed on (fail-open) or 503 (fail-closed), per policy
- Unresolvable selectors or caller: 400, or dedup skipped, per policy

Decision headers are added to all protected responses:
- X-Admission-Decision: allow, duplicate, rate_limited or unknown
- X-RateLimit-Remaining: Remaining quota, when known
"""

import json
from collections.abc import Callable, Mapping
from typing import Any

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from tollgate.admission.exceptions import RateLimitedError, StoreUnavailableError
from tollgate.admission.guard import AdmissionGuard, GuardAction, GuardVerdict
from tollgate.api.exceptions import error_response, invalid_request
from tollgate.api.models.errors import DuplicateResponse
from tollgate.observability.logging import get_logger

logger = get_logger(__name__)

GUARDED_METHODS = frozenset({"POST", "PUT", "PATCH"})


class AdmissionMiddleware(BaseHTTPMiddleware):
    """Middleware that runs protected requests through their admission guard."""

    def __init__(
        self,
        app: Callable[..., Any],
        guards: Mapping[str, AdmissionGuard],
        caller_header: str = "X-Device-Id",
        enabled: bool = True,
    ) -> None:
        """Initialize the middleware.

        Args:
            app: ASGI application
            guards: Request path -> guard protecting it
            caller_header: Header carrying the caller id
            enabled: Whether admission control is applied
        """
        super().__init__(app)
        self._guards = dict(guards)
        self._caller_header = caller_header
        self._enabled = enabled

    async def dispatch(  # type: ignore[override]
        self, request: Request, call_next: Callable[[Request], Any]
    ) -> Response:
        """Process request with admission control."""
        guard = self._guards.get(request.url.path)
        if not self._enabled or guard is None or request.method not in GUARDED_METHODS:
            return await call_next(request)  # type: ignore[no-any-return]

        try:
            payload = json.loads(await request.body())
        except (json.JSONDecodeError, UnicodeDecodeError):
            return invalid_request("Request body must be valid JSON")

        caller_id = request.headers.get(self._caller_header)
        if not caller_id and guard.policy.caller_selector is None:
            return invalid_request(f"Missing {self._caller_header} header")

        verdict = await guard.check(payload, caller_id=caller_id)
        response = await self._respond(request, call_next, guard, verdict)

        if verdict.result is not None:
            response.headers["X-Admission-Decision"] = verdict.result.decision.value
            if verdict.result.remaining is not None:
                response.headers["X-RateLimit-Remaining"] = str(verdict.result.remaining)
        return response

    async def _respond(
        self,
        request: Request,
        call_next: Callable[[Request], Any],
        guard: AdmissionGuard,
        verdict: GuardVerdict,
    ) -> Response:
        operation_id = guard.policy.operation_id

        if verdict.action == GuardAction.PROCEED:
            return await call_next(request)  # type: ignore[no-any-return]

        if verdict.action == GuardAction.RESPOND_DUPLICATE:
            body = DuplicateResponse(
                operation_id=operation_id,
                fingerprint=verdict.result.fingerprint if verdict.result else None,
            )
            return JSONResponse(status_code=200, content=body.model_dump())

        if verdict.action == GuardAction.REJECT_RATE_LIMITED:
            return error_response(
                RateLimitedError(
                    f"Rate limit exceeded for operation '{operation_id}'",
                    retry_after=verdict.result.retry_after if verdict.result else None,
                )
            )

        if verdict.error is not None:
            return error_response(verdict.error)
        return error_response(StoreUnavailableError("Admission could not be evaluated"))
