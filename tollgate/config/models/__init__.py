"""Configuration model exports.

    from tollgate.config.models import StorageConfig, ObservabilityConfig
"""

from tollgate.config.models.api import APIConfig
from tollgate.config.models.observability import (
    LoggingConfig,
    MetricsConfig,
    ObservabilityConfig,
)
from tollgate.config.models.storage import StorageConfig

__all__ = [
    "APIConfig",
    "LoggingConfig",
    "MetricsConfig",
    "ObservabilityConfig",
    "StorageConfig",
]
