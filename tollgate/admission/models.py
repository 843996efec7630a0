"""Admission models and enums.

Decisions, limiter parameters and the policies that tell the guard how to
treat indeterminate outcomes.
"""

import math
from datetime import timedelta
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from tollgate.admission.exceptions import ConfigurationError

# Store timestamps and expiries have millisecond resolution
MIN_DURATION = 0.001


class SetupModel(BaseModel):
    """Frozen model that reports invalid input as ConfigurationError."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    def __init__(self, **data: Any) -> None:
        try:
            super().__init__(**data)
        except ValidationError as exc:
            raise ConfigurationError(
                f"Invalid {type(self).__name__}: {exc}"
            ) from exc


class Decision(str, Enum):
    """Classification of a single admission attempt."""

    ALLOW = "allow"
    DUPLICATE = "duplicate"
    RATE_LIMITED = "rate_limited"
    UNKNOWN = "unknown"


class LimiterMode(str, Enum):
    """Rate limiting algorithm."""

    WINDOW = "window"
    BUCKET = "bucket"


class FailurePolicy(str, Enum):
    """How an UNKNOWN decision is treated."""

    FAIL_OPEN = "fail_open"
    FAIL_CLOSED = "fail_closed"


class ExtractionFailurePolicy(str, Enum):
    """How a payload whose selectors do not resolve is treated."""

    SKIP_DEDUP = "skip_dedup"
    REJECT = "reject"


class LimiterConfig(SetupModel):
    """Rate limiter parameters.

    In window mode ``limit`` admissions are allowed per trailing ``period``
    seconds. In bucket mode ``limit`` is the bucket capacity and one token
    is refilled every ``period`` seconds.
    """

    mode: LimiterMode
    limit: int = Field(gt=0, description="Window admissions or bucket capacity")
    period: float = Field(
        gt=0,
        description="Window length, or seconds needed to refill one token",
    )
    state_ttl_factor: float = Field(
        default=2.0,
        ge=1.0,
        description="State expiry as a multiple of the time it takes to reset",
    )

    @field_validator("period", mode="before")
    @classmethod
    def parse_period(cls, v: Any) -> Any:
        """Accept timedelta as well as seconds."""
        if isinstance(v, timedelta):
            return v.total_seconds()
        return v

    @field_validator("period")
    @classmethod
    def check_resolution(cls, v: float) -> float:
        """Store timestamps have millisecond resolution."""
        if v < MIN_DURATION:
            raise ValueError("period must be at least one millisecond")
        return v

    @classmethod
    def window(cls, limit: int, window: float | timedelta) -> "LimiterConfig":
        """Sliding window of ``limit`` admissions per ``window`` seconds."""
        return cls(mode=LimiterMode.WINDOW, limit=limit, period=window)

    @classmethod
    def bucket(cls, capacity: int, refill_rate: float) -> "LimiterConfig":
        """Token bucket of ``capacity`` tokens refilled at ``refill_rate``/s."""
        if refill_rate <= 0:
            raise ConfigurationError("refill_rate must be positive")
        return cls(mode=LimiterMode.BUCKET, limit=capacity, period=1.0 / refill_rate)

    @property
    def refill_rate(self) -> float:
        """Tokens added per second (bucket mode)."""
        return 1.0 / self.period

    @property
    def state_ttl(self) -> float:
        """Seconds an idle caller's state is retained.

        A window resets after one period; a bucket refills completely after
        ``limit`` periods.
        """
        reset = self.period if self.mode == LimiterMode.WINDOW else self.period * self.limit
        return max(1.0, reset * self.state_ttl_factor)

    @property
    def period_ms(self) -> int:
        return int(round(self.period * 1000))

    @property
    def state_ttl_ms(self) -> int:
        return int(math.ceil(self.state_ttl * 1000))


class AdmissionResult(BaseModel):
    """Result of one atomic admission evaluation."""

    decision: Decision = Field(description="Classified outcome")
    operation_id: str | None = Field(
        default=None, description="Protected operation identity"
    )
    caller_id: str | None = Field(
        default=None, description="Calling device or principal"
    )
    fingerprint: str | None = Field(
        default=None, description="Content fingerprint, absent when dedup was skipped"
    )
    remaining: int | None = Field(
        default=None, description="Quota left after this attempt, when known"
    )
    retry_after: float | None = Field(
        default=None, description="Seconds until quota is available again"
    )
    error: str | None = Field(
        default=None, description="Store failure description for UNKNOWN"
    )
