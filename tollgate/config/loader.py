"""TOML configuration loader.

Files are read from the config directory and merged in order:
``default.toml`` first, then ``{TOLLGATE_ENV}.toml``. Tables merge
recursively. The ``[[operations]]`` array merges by ``operation_id`` so an
environment file can tune one operation's limiter without repeating the
whole table; unknown ids are appended.
"""

import os
import tomllib
from pathlib import Path
from typing import Any

from tollgate.admission.exceptions import ConfigurationError
from tollgate.admission.policy import AdmissionPolicy

OPERATIONS_KEY = "operations"

# How far up from the working directory to look for config/
_SEARCH_DEPTH = 5


def get_config_dir() -> Path:
    """Get the configuration directory.

    TOLLGATE_CONFIG_DIR wins when set. Otherwise the first ``config/`` found
    in the working directory or its parents, falling back to ``config``.

    Raises:
        FileNotFoundError: If TOLLGATE_CONFIG_DIR names a missing directory
    """
    override = os.environ.get("TOLLGATE_CONFIG_DIR")
    if override:
        path = Path(override)
        if not path.exists():
            raise FileNotFoundError(f"Config directory not found: {override}")
        return path

    for directory in [Path.cwd(), *Path.cwd().parents][:_SEARCH_DEPTH]:
        if (directory / "config").exists():
            return directory / "config"
    return Path("config")


def get_environment() -> str:
    """Get the environment name from TOLLGATE_ENV (default: development)."""
    return os.environ.get("TOLLGATE_ENV", "development")


def load_toml(file_path: Path) -> dict[str, Any]:
    """Read one TOML file.

    Raises:
        FileNotFoundError: If the file doesn't exist
        tomllib.TOMLDecodeError: If the TOML syntax is invalid
    """
    if not file_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {file_path}")
    with file_path.open("rb") as f:
        return tomllib.load(f)


def merge_operations(
    base: list[dict[str, Any]], override: list[dict[str, Any]]
) -> list[dict[str, Any]]:
    """Merge two operations arrays by operation_id, keeping base order."""
    merged = [dict(entry) for entry in base]
    index = {
        entry.get("operation_id"): position
        for position, entry in enumerate(merged)
        if entry.get("operation_id")
    }
    for entry in override:
        position = index.get(entry.get("operation_id"))
        if position is None:
            merged.append(dict(entry))
        else:
            merged[position] = deep_merge(merged[position], entry)
    return merged


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge override into base, override taking precedence.

    Nested tables merge recursively and the operations array merges by
    operation_id. Any other value, lists included, is replaced.
    """
    result = base.copy()
    for key, value in override.items():
        current = result.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            result[key] = deep_merge(current, value)
        elif key == OPERATIONS_KEY and isinstance(current, list) and isinstance(value, list):
            result[key] = merge_operations(current, value)
        else:
            result[key] = value
    return result


def validate_operations(config: dict[str, Any]) -> list[AdmissionPolicy]:
    """Build the admission policy of every configured operation.

    Raises:
        ConfigurationError: Naming the first operation that is invalid
    """
    entries = config.get(OPERATIONS_KEY, [])
    if not isinstance(entries, list):
        raise ConfigurationError("'operations' must be an array of tables")

    policies = []
    for position, entry in enumerate(entries):
        name = entry.get("operation_id", f"#{position}") if isinstance(entry, dict) else position
        try:
            policies.append(AdmissionPolicy.from_mapping(entry))
        except ConfigurationError as exc:
            raise ConfigurationError(f"Operation '{name}': {exc.message}") from exc
    return policies


def load_config() -> dict[str, Any]:
    """Load and merge the configuration files.

    Loading order:
    1. config/default.toml (required)
    2. config/{TOLLGATE_ENV}.toml (optional)

    Operations are validated after merging so a broken policy fails at
    startup with the operation named.

    Raises:
        FileNotFoundError: If default.toml is missing
        ConfigurationError: If a merged operation is invalid
    """
    config_dir = get_config_dir()

    default_path = config_dir / "default.toml"
    if not default_path.exists():
        raise FileNotFoundError(
            f"Default configuration file not found: {default_path}. "
            "Create config/default.toml or set TOLLGATE_CONFIG_DIR."
        )
    config = load_toml(default_path)

    env_path = config_dir / f"{get_environment()}.toml"
    if env_path.exists():
        config = deep_merge(config, load_toml(env_path))

    validate_operations(config)
    return config
