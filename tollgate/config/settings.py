"""Root settings model for Tollgate configuration."""

from typing import Any, Literal

from pydantic import Field, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from tollgate.admission.policy import AdmissionPolicy
from tollgate.config.models.api import APIConfig
from tollgate.config.models.observability import ObservabilityConfig
from tollgate.config.models.storage import StorageConfig

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

# Module-level variable to store TOML config for settings source
_toml_config: dict[str, Any] = {}


def set_toml_config(config: dict[str, Any]) -> None:
    """Set the TOML configuration to be used by Settings."""
    global _toml_config
    _toml_config = config


class TomlConfigSettingsSource(PydanticBaseSettingsSource):
    """Custom settings source that reads from TOML configuration."""

    def get_field_value(
        self, field: Any, field_name: str  # noqa: ARG002
    ) -> tuple[Any, str, bool]:
        """Get field value from TOML config."""
        value = _toml_config.get(field_name)
        return value, field_name, value is not None

    def __call__(self) -> dict[str, Any]:
        """Return the TOML config values."""
        return _toml_config.copy()


class Settings(BaseSettings):
    """Root configuration object containing all nested configuration sections.

    Configuration is loaded in this order:
    1. Pydantic model defaults (in code)
    2. config/default.toml (base configuration)
    3. config/{TOLLGATE_ENV}.toml (environment overrides)
    4. TOLLGATE_* environment variables (runtime overrides)
    """

    model_config = SettingsConfigDict(
        env_prefix="TOLLGATE_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = Field(default="tollgate", description="Application name for logging")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: LogLevel = Field(default="INFO", description="Logging level")

    api: APIConfig = Field(default_factory=APIConfig, description="HTTP adapter configuration")
    storage: StorageConfig = Field(
        default_factory=StorageConfig,
        description="Admission store configuration",
    )
    observability: ObservabilityConfig = Field(
        default_factory=ObservabilityConfig,
        description="Observability configuration",
    )
    operations: list[AdmissionPolicy] = Field(
        default_factory=list,
        description="Protected operations and their admission policies",
    )

    @model_validator(mode="after")
    def check_operations(self) -> "Settings":
        """Operation ids are unique and every protected path names one."""
        seen: set[str] = set()
        for policy in self.operations:
            if policy.operation_id in seen:
                raise ValueError(f"Duplicate operation_id '{policy.operation_id}'")
            seen.add(policy.operation_id)
        for path, operation_id in self.api.protected_paths.items():
            if operation_id not in seen:
                raise ValueError(
                    f"Protected path '{path}' references unknown operation '{operation_id}'"
                )
        return self

    def get_policy(self, operation_id: str) -> AdmissionPolicy | None:
        """Get the policy of an operation, if configured."""
        for policy in self.operations:
            if policy.operation_id == operation_id:
                return policy
        return None

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        file_secret_settings: PydanticBaseSettingsSource,  # noqa: ARG003
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Customize settings sources to include TOML config.

        Priority order (highest to lowest):
        1. init_settings (constructor arguments)
        2. env_settings (TOLLGATE_* environment variables)
        3. toml_settings (config/*.toml files)
        4. (defaults from model)
        """
        return (
            init_settings,
            env_settings,
            TomlConfigSettingsSource(settings_cls),
        )
