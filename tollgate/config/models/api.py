"""HTTP adapter configuration models."""

from pydantic import BaseModel, Field


class APIConfig(BaseModel):
    """Configuration for the HTTP admission adapter."""

    enabled: bool = Field(default=True, description="Apply admission to protected paths")
    caller_header: str = Field(
        default="X-Device-Id",
        description="Request header carrying the caller id",
    )
    protected_paths: dict[str, str] = Field(
        default_factory=dict,
        description="Request path -> operation_id of the policy protecting it",
    )
