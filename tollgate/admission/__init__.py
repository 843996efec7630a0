"""Atomic admission control for retry-prone telemetry ingestion.

Every inbound message gets one atomic decision against a shared store:
- Deduplication: content already admitted within the dedup window is a DUPLICATE
- Rate limiting: distinct messages per caller are bounded by a sliding
  window or token bucket; duplicates never consume quota

Usage:
    from tollgate.admission import (
        AdmissionEngine,
        AdmissionGuard,
        AdmissionPolicy,
        LimiterConfig,
    )
    from tollgate.admission.stores import RedisScriptStore

    engine = AdmissionEngine(RedisScriptStore(redis), timeout=0.25)
    guard = AdmissionGuard(
        AdmissionPolicy(
            operation_id="submitResult",
            field_selectors=["deviceId", "testResult", "stepId"],
            limiter=LimiterConfig.window(limit=5, window=1),
        ),
        engine,
    )
    verdict = await guard.check(payload, caller_id="D1")
"""

from tollgate.admission.engine import AdmissionEngine
from tollgate.admission.exceptions import (
    AdmissionRejectedError,
    ConfigurationError,
    ExtractionError,
    MissingCallerError,
    RateLimitedError,
    StoreUnavailableError,
    TollgateError,
)
from tollgate.admission.fingerprint import FingerprintExtractor, compute_fingerprint
from tollgate.admission.guard import AdmissionGuard, GuardAction, GuardVerdict
from tollgate.admission.keys import AdmissionKeys, KeyBuilder
from tollgate.admission.models import (
    AdmissionResult,
    Decision,
    ExtractionFailurePolicy,
    FailurePolicy,
    LimiterConfig,
    LimiterMode,
)
from tollgate.admission.policy import AdmissionPolicy

__all__ = [
    "AdmissionEngine",
    "AdmissionGuard",
    "AdmissionKeys",
    "AdmissionPolicy",
    "AdmissionRejectedError",
    "AdmissionResult",
    "ConfigurationError",
    "Decision",
    "ExtractionError",
    "ExtractionFailurePolicy",
    "FailurePolicy",
    "FingerprintExtractor",
    "GuardAction",
    "GuardVerdict",
    "KeyBuilder",
    "LimiterConfig",
    "LimiterMode",
    "MissingCallerError",
    "RateLimitedError",
    "StoreUnavailableError",
    "TollgateError",
    "compute_fingerprint",
]
