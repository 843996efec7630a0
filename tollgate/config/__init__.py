"""Configuration loading for Tollgate.

Configuration is loaded from TOML files with environment variable overrides.

Usage:
    from tollgate.config import get_settings

    settings = get_settings()
    backend = settings.storage.backend
    policies = settings.operations
"""

from functools import lru_cache

from pydantic import ValidationError

from tollgate.admission.exceptions import ConfigurationError
from tollgate.config.loader import load_config
from tollgate.config.settings import Settings, set_toml_config


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the singleton settings instance.

    Configuration is loaded in this order:
    1. Pydantic model defaults (in code)
    2. config/default.toml (base configuration)
    3. config/{TOLLGATE_ENV}.toml (environment overrides)
    4. TOLLGATE_* environment variables (runtime overrides)

    The result is cached for the lifetime of the process.
    Call `get_settings.cache_clear()` to reload configuration.

    Raises:
        ConfigurationError: If the merged configuration is invalid
    """
    config_dict = load_config()
    set_toml_config(config_dict)

    try:
        return Settings()
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc


def reload_settings() -> Settings:
    """Clear the settings cache and reload configuration."""
    get_settings.cache_clear()
    return get_settings()


__all__ = ["get_settings", "reload_settings", "Settings"]
