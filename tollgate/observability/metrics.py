"""Prometheus metrics for Tollgate.

Counts admission decisions per protected operation and tracks the latency
and failures of the atomic store round trip.
"""

from prometheus_client import Counter, Histogram

# Decision metrics
ADMISSION_DECISIONS = Counter(
    "tollgate_admission_decisions_total",
    "Total number of admission decisions",
    labelnames=["operation_id", "decision"],
)

# Store metrics
STORE_LATENCY = Histogram(
    "tollgate_store_latency_seconds",
    "Latency of the atomic admission round trip in seconds",
    labelnames=["backend", "procedure"],
    buckets=(0.0005, 0.001, 0.0025, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0),
)

STORE_ERRORS = Counter(
    "tollgate_store_errors_total",
    "Total number of failed or timed out store round trips",
    labelnames=["backend", "error_type"],
)

# Extraction metrics
EXTRACTION_FAILURES = Counter(
    "tollgate_extraction_failures_total",
    "Total number of payloads whose fingerprint selectors did not resolve",
    labelnames=["operation_id", "policy"],
)


def setup_metrics() -> None:
    """Initialize metrics configuration.

    prometheus_client registers collectors on definition; this hook exists
    so application startup has a single place to extend.
    """
    pass
