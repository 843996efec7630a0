"""Admission store configuration models."""

from typing import Literal

from pydantic import BaseModel, Field

BackendType = Literal["inmemory", "redis", "redis_transaction"]


class StorageConfig(BaseModel):
    """Configuration for the shared admission store.

    Note: credentials belong in TOLLGATE_REDIS_URL, not in config files.
    """

    backend: BackendType = Field(
        default="redis",
        description="Store backend (redis scripting, redis transactions, in-memory)",
    )
    url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL",
    )
    timeout_seconds: float = Field(
        default=0.25,
        gt=0,
        description="Deadline for one admission round trip",
    )
    socket_timeout_seconds: float = Field(
        default=1.0,
        gt=0,
        description="Redis socket connect/read timeout",
    )
    key_namespace: str | None = Field(
        default=None,
        description="Prefix shared by every admission key",
    )
    cluster_hash_tags: bool = Field(
        default=False,
        description="Hash-tag operation ids so both keys share a cluster slot",
    )
    max_retries: int = Field(
        default=5,
        gt=0,
        description="Optimistic transaction attempts (redis_transaction only)",
    )
