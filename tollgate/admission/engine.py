"""Atomic admission decision engine.

Classifies each inbound message as ALLOW, DUPLICATE, RATE_LIMITED or
UNKNOWN with exactly one atomic store call. The engine keeps no local state
and takes no local locks; concurrent callers in any number of processes are
serialized by the store.

Ordering inside the atomic step:
1. Conditional create of the dedup record; already present -> DUPLICATE
   and the limiter state is never read or written
2. Limiter evaluation -> RATE_LIMITED or ALLOW

Any store failure, timeout or unreadable reply yields UNKNOWN. The engine
never guesses ALLOW or DUPLICATE for an attempt it could not evaluate.
"""

import asyncio
import math
import time
from collections.abc import Callable
from uuid import uuid4

from redis.exceptions import RedisError

from tollgate.admission.exceptions import ConfigurationError, StoreUnavailableError
from tollgate.admission.keys import AdmissionKeys, KeyBuilder
from tollgate.admission.models import (
    MIN_DURATION,
    AdmissionResult,
    Decision,
    LimiterConfig,
    LimiterMode,
)
from tollgate.admission.stores.base import (
    AtomicStore,
    Procedure,
    ProcedureArgs,
    ReplyCode,
)
from tollgate.observability.logging import get_logger
from tollgate.observability.metrics import (
    ADMISSION_DECISIONS,
    STORE_ERRORS,
    STORE_LATENCY,
)

logger = get_logger(__name__)

_DECISIONS = {
    ReplyCode.ALLOW: Decision.ALLOW,
    ReplyCode.DUPLICATE: Decision.DUPLICATE,
    ReplyCode.RATE_LIMITED: Decision.RATE_LIMITED,
}

_PROCEDURES = {
    LimiterMode.WINDOW: Procedure.ADMIT_WINDOW,
    LimiterMode.BUCKET: Procedure.ADMIT_BUCKET,
}

# Failures that leave the outcome of the round trip undetermined
STORE_FAILURES = (RedisError, OSError, TimeoutError, StoreUnavailableError)


class AdmissionEngine:
    """Evaluates dedup and rate limiting as one atomic store operation."""

    def __init__(
        self,
        store: AtomicStore,
        key_builder: KeyBuilder | None = None,
        timeout: float | None = None,
        member_factory: Callable[[], str] | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            store: Store that runs admission procedures atomically
            key_builder: Key layout (default: un-namespaced keys)
            timeout: Deadline in seconds for the store round trip
            member_factory: Produces unique ids for window admissions
        """
        self._store = store
        self._keys = key_builder or KeyBuilder()
        self._timeout = timeout
        self._member_factory = member_factory or (lambda: uuid4().hex)

    @property
    def store(self) -> AtomicStore:
        return self._store

    @property
    def key_builder(self) -> KeyBuilder:
        return self._keys

    async def evaluate(
        self,
        operation_id: str,
        fingerprint: str | None,
        dedup_ttl: float,
        caller_id: str,
        limiter: LimiterConfig,
        now: float | None = None,
    ) -> AdmissionResult:
        """Classify one admission attempt.

        Args:
            operation_id: Protected operation identity
            fingerprint: Content fingerprint; None disables dedup for this call
            dedup_ttl: Dedup window in seconds (positive when fingerprint given)
            caller_id: Calling device or principal
            limiter: Rate limiter parameters
            now: Logically agreed time in seconds; None uses the store clock

        Returns:
            AdmissionResult with the decision

        Raises:
            ConfigurationError: If a fingerprint comes with a dedup_ttl below
                one millisecond
        """
        keys = self._keys.build(operation_id, caller_id, fingerprint)
        return await self.evaluate_keys(
            keys,
            dedup_ttl,
            limiter,
            now,
            operation_id=operation_id,
            caller_id=caller_id,
            fingerprint=fingerprint,
        )

    async def evaluate_keys(
        self,
        keys: AdmissionKeys,
        dedup_ttl: float,
        limiter: LimiterConfig,
        now: float | None = None,
        *,
        operation_id: str | None = None,
        caller_id: str | None = None,
        fingerprint: str | None = None,
    ) -> AdmissionResult:
        """Classify one admission attempt against pre-built keys."""
        if keys.dedup is not None and dedup_ttl < MIN_DURATION:
            raise ConfigurationError(
                f"dedup_ttl must be at least one millisecond, got {dedup_ttl}"
            )
        procedure = _PROCEDURES[limiter.mode]
        args = ProcedureArgs(
            now_ms=None if now is None else int(now * 1000),
            dedup_ttl_ms=int(math.ceil(dedup_ttl * 1000)) if keys.dedup else 0,
            limit=limiter.limit,
            period_ms=limiter.period_ms,
            state_ttl_ms=limiter.state_ttl_ms,
            member=self._member_factory(),
        )

        started = time.perf_counter()
        try:
            if self._timeout is None:
                reply = await self._store.execute(procedure, keys, args)
            else:
                reply = await asyncio.wait_for(
                    self._store.execute(procedure, keys, args),
                    timeout=self._timeout,
                )
        except STORE_FAILURES as exc:
            STORE_ERRORS.labels(
                backend=self._store.backend, error_type=type(exc).__name__
            ).inc()
            error = str(exc) or type(exc).__name__
            logger.error(
                "admission_store_unavailable",
                operation_id=operation_id,
                caller_id=caller_id,
                key=keys.ratelimit,
                error=error,
                error_type=type(exc).__name__,
            )
            return self._record(
                AdmissionResult(
                    decision=Decision.UNKNOWN,
                    operation_id=operation_id,
                    caller_id=caller_id,
                    fingerprint=fingerprint,
                    error=error,
                )
            )
        finally:
            STORE_LATENCY.labels(
                backend=self._store.backend, procedure=procedure.value
            ).observe(time.perf_counter() - started)

        result = AdmissionResult(
            decision=_DECISIONS[reply.code],
            operation_id=operation_id,
            caller_id=caller_id,
            fingerprint=fingerprint,
            remaining=reply.remaining,
            retry_after=(
                reply.retry_after_ms / 1000
                if reply.code == ReplyCode.RATE_LIMITED
                else None
            ),
        )

        if result.decision == Decision.DUPLICATE:
            logger.info(
                "admission_duplicate",
                operation_id=operation_id,
                caller_id=caller_id,
                fingerprint=fingerprint,
            )
        elif result.decision == Decision.RATE_LIMITED:
            logger.warning(
                "admission_rate_limited",
                operation_id=operation_id,
                caller_id=caller_id,
                mode=limiter.mode.value,
                limit=limiter.limit,
                retry_after=result.retry_after,
            )
        else:
            logger.debug(
                "admission_allowed",
                operation_id=operation_id,
                caller_id=caller_id,
                remaining=result.remaining,
            )
        return self._record(result)

    def _record(self, result: AdmissionResult) -> AdmissionResult:
        ADMISSION_DECISIONS.labels(
            operation_id=result.operation_id or "",
            decision=result.decision.value,
        ).inc()
        return result
