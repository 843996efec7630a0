"""Admission policy: the explicit configuration of one protected operation.

Policies are constructed and validated at setup and handed to an
AdmissionGuard. Nothing about a policy is inferred from call-site metadata.
"""

from collections.abc import Mapping
from typing import Any

from pydantic import Field, field_validator, model_validator

from tollgate.admission.exceptions import ConfigurationError
from tollgate.admission.fingerprint import parse_selector
from tollgate.admission.models import (
    MIN_DURATION,
    ExtractionFailurePolicy,
    FailurePolicy,
    LimiterConfig,
    SetupModel,
)


class AdmissionPolicy(SetupModel):
    """Dedup and rate limiting configuration for one protected operation.

    Example:
        AdmissionPolicy(
            operation_id="submitResult",
            dedup_ttl=5,
            field_selectors=["deviceId", "testResult", "stepId"],
            limiter=LimiterConfig.window(limit=5, window=1),
        )
    """

    operation_id: str = Field(min_length=1, description="Protected operation identity")
    enable_dedup: bool = Field(default=True, description="Suppress repeated content")
    dedup_ttl: float = Field(default=5.0, description="Dedup window in seconds")
    field_selectors: tuple[str, ...] = Field(
        default=(),
        description="Fields that define message identity (empty: whole payload)",
    )
    exclude_fields: tuple[str, ...] = Field(
        default=(),
        description="Volatile fields dropped from a whole-payload fingerprint",
    )
    caller_selector: str | None = Field(
        default=None,
        description="Payload field holding the caller id when none is supplied",
    )
    limiter: LimiterConfig = Field(description="Rate limiter parameters")
    on_store_failure: FailurePolicy = Field(
        default=FailurePolicy.FAIL_CLOSED,
        description="Treatment of UNKNOWN decisions",
    )
    on_extraction_failure: ExtractionFailurePolicy = Field(
        default=ExtractionFailurePolicy.REJECT,
        description="Treatment of payloads whose selectors do not resolve",
    )

    @field_validator("field_selectors", "exclude_fields")
    @classmethod
    def check_selectors(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        """Reject malformed selectors at setup."""
        for selector in v:
            parse_selector(selector)
        return v

    @field_validator("caller_selector")
    @classmethod
    def check_caller_selector(cls, v: str | None) -> str | None:
        if v is not None:
            parse_selector(v)
        return v

    @model_validator(mode="after")
    def check_dedup(self) -> "AdmissionPolicy":
        """Dedup needs a positive window and one way of selecting fields."""
        if self.enable_dedup and self.dedup_ttl < MIN_DURATION:
            raise ValueError("dedup_ttl must be positive when dedup is enabled")
        if self.field_selectors and self.exclude_fields:
            raise ValueError("field_selectors and exclude_fields are mutually exclusive")
        return self

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "AdmissionPolicy":
        """Build a policy from plain configuration data.

        Raises:
            ConfigurationError: If the data is not a valid policy
        """
        if not isinstance(data, Mapping):
            raise ConfigurationError(f"Policy must be a mapping, got {type(data).__name__}")
        return cls(**data)
