"""Admission guard: applies a policy to inbound payloads.

The guard is what an interceptor calls before business execution. It
fingerprints the payload, asks the engine for a decision and maps that
decision to an action using the policy's explicit failure rules:

    ALLOW          -> PROCEED
    DUPLICATE      -> RESPOND_DUPLICATE (answer as if the original succeeded)
    RATE_LIMITED   -> REJECT_RATE_LIMITED
    UNKNOWN        -> PROCEED (fail-open) or REJECT_UNAVAILABLE (fail-closed)
    selector error -> dedup skipped, or REJECT_INVALID
"""

import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from tollgate.admission.engine import AdmissionEngine
from tollgate.admission.exceptions import (
    ExtractionError,
    MissingCallerError,
    RateLimitedError,
    StoreUnavailableError,
    TollgateError,
)
from tollgate.admission.fingerprint import FingerprintExtractor, normalize, parse_selector, resolve
from tollgate.admission.models import (
    AdmissionResult,
    Decision,
    ExtractionFailurePolicy,
    FailurePolicy,
)
from tollgate.admission.policy import AdmissionPolicy
from tollgate.observability.logging import get_logger
from tollgate.observability.metrics import EXTRACTION_FAILURES

logger = get_logger(__name__)


class GuardAction(str, Enum):
    """What the interceptor should do with a request."""

    PROCEED = "proceed"
    RESPOND_DUPLICATE = "respond_duplicate"
    REJECT_RATE_LIMITED = "reject_rate_limited"
    REJECT_UNAVAILABLE = "reject_unavailable"
    REJECT_INVALID = "reject_invalid"


@dataclass(frozen=True)
class GuardVerdict:
    """Outcome of AdmissionGuard.check."""

    action: GuardAction
    result: AdmissionResult | None = None
    """Engine result; None when the request was rejected before evaluation."""

    dedup_skipped: bool = False
    error: TollgateError | None = None

    @property
    def admitted(self) -> bool:
        return self.action == GuardAction.PROCEED

    @property
    def decision(self) -> Decision | None:
        return self.result.decision if self.result else None


class AdmissionGuard:
    """Applies one AdmissionPolicy using a shared AdmissionEngine."""

    def __init__(self, policy: AdmissionPolicy, engine: AdmissionEngine) -> None:
        """Initialize the guard.

        Args:
            policy: Validated policy of the protected operation
            engine: Engine bound to the shared store

        Raises:
            ConfigurationError: If the policy's selectors are inconsistent
        """
        self._policy = policy
        self._engine = engine
        self._extractor = (
            FingerprintExtractor(policy.field_selectors, policy.exclude_fields)
            if policy.enable_dedup
            else None
        )
        self._caller_path = (
            parse_selector(policy.caller_selector) if policy.caller_selector else None
        )

    @property
    def policy(self) -> AdmissionPolicy:
        return self._policy

    @property
    def engine(self) -> AdmissionEngine:
        return self._engine

    def resolve_caller(self, payload: Any, caller_id: str | None = None) -> str:
        """Determine the caller id for a payload.

        Raises:
            ExtractionError: If the caller field does not resolve
            MissingCallerError: If no caller id is supplied and the policy has
                no caller field
        """
        if caller_id:
            return caller_id
        if self._caller_path is None or self._policy.caller_selector is None:
            raise MissingCallerError(
                f"No caller id supplied for operation '{self._policy.operation_id}'"
            )
        value = resolve(normalize(payload), self._caller_path, self._policy.caller_selector)
        if value is None or value == "":
            raise ExtractionError(self._policy.caller_selector, "caller id is empty")
        return str(value)

    async def check(
        self,
        payload: Any,
        caller_id: str | None = None,
        now: float | None = None,
    ) -> GuardVerdict:
        """Evaluate a payload and decide what the interceptor should do.

        Args:
            payload: Message payload (mapping, model or dataclass)
            caller_id: Calling device; falls back to the policy's caller field
            now: Logically agreed time in seconds; None uses the store clock

        Returns:
            GuardVerdict with the action and the engine result
        """
        operation_id = self._policy.operation_id

        try:
            caller = self.resolve_caller(payload, caller_id)
        except ExtractionError as exc:
            logger.warning(
                "admission_caller_unresolved",
                operation_id=operation_id,
                selector=exc.selector,
                reason=exc.reason,
            )
            return GuardVerdict(action=GuardAction.REJECT_INVALID, error=exc)
        except MissingCallerError as exc:
            logger.warning("admission_caller_missing", operation_id=operation_id)
            return GuardVerdict(action=GuardAction.REJECT_INVALID, error=exc)

        fingerprint: str | None = None
        dedup_skipped = False
        if self._extractor is not None:
            try:
                fingerprint = self._extractor.fingerprint(payload)
            except ExtractionError as exc:
                policy = self._policy.on_extraction_failure
                EXTRACTION_FAILURES.labels(
                    operation_id=operation_id, policy=policy.value
                ).inc()
                logger.warning(
                    "admission_extraction_failed",
                    operation_id=operation_id,
                    caller_id=caller,
                    selector=exc.selector,
                    reason=exc.reason,
                    policy=policy.value,
                )
                if policy == ExtractionFailurePolicy.REJECT:
                    return GuardVerdict(action=GuardAction.REJECT_INVALID, error=exc)
                dedup_skipped = True

        result = await self._engine.evaluate(
            operation_id,
            fingerprint,
            self._policy.dedup_ttl,
            caller,
            self._policy.limiter,
            now,
        )
        return GuardVerdict(
            action=self._action(result),
            result=result,
            dedup_skipped=dedup_skipped,
            error=(
                StoreUnavailableError(result.error or "Store unavailable")
                if result.decision == Decision.UNKNOWN
                else None
            ),
        )

    def _action(self, result: AdmissionResult) -> GuardAction:
        if result.decision == Decision.ALLOW:
            return GuardAction.PROCEED
        if result.decision == Decision.DUPLICATE:
            return GuardAction.RESPOND_DUPLICATE
        if result.decision == Decision.RATE_LIMITED:
            return GuardAction.REJECT_RATE_LIMITED
        if self._policy.on_store_failure == FailurePolicy.FAIL_OPEN:
            logger.warning(
                "admission_failed_open",
                operation_id=result.operation_id,
                caller_id=result.caller_id,
            )
            return GuardAction.PROCEED
        return GuardAction.REJECT_UNAVAILABLE

    async def run(
        self,
        payload: Any,
        handler: Callable[[Any], Awaitable[Any] | Any],
        *,
        caller_id: str | None = None,
        on_duplicate: Callable[[Any], Awaitable[Any] | Any] | None = None,
    ) -> Any:
        """Run a business handler behind the guard.

        Duplicates are answered with ``on_duplicate(payload)`` (or None) so a
        retrying device sees success instead of an error that would make it
        resend again.

        Raises:
            RateLimitedError: If the caller exhausted its quota
            StoreUnavailableError: If the store failed under fail-closed
            ExtractionError: If the payload was rejected as unfingerprintable
        """
        verdict = await self.check(payload, caller_id=caller_id)

        if verdict.action == GuardAction.PROCEED:
            return await _call(handler, payload)
        if verdict.action == GuardAction.RESPOND_DUPLICATE:
            return await _call(on_duplicate, payload) if on_duplicate else None
        if verdict.action == GuardAction.REJECT_RATE_LIMITED:
            retry_after = verdict.result.retry_after if verdict.result else None
            raise RateLimitedError(
                f"Rate limit exceeded for operation '{self._policy.operation_id}'",
                retry_after=retry_after,
            )
        if verdict.error is not None:
            raise verdict.error
        raise StoreUnavailableError("Admission could not be evaluated")


async def _call(func: Callable[[Any], Awaitable[Any] | Any], payload: Any) -> Any:
    value = func(payload)
    if inspect.isawaitable(value):
        return await value
    return value
