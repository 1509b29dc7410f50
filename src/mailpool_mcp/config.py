"""Configuration loader.

Loads configuration from YAML, validates it against the Pydantic schema and
overlays secrets from the environment. The resulting AppConfig is passed
explicitly into constructors; there is no module-level config singleton.

Usage:
    from mailpool_mcp.config import load_config, require_directory_key

    config = load_config()
    api_key = require_directory_key(config)
"""

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from mailpool_mcp.config_schema import CURRENT_SCHEMA_VERSION, AppConfig
from mailpool_mcp.core.errors import (
    ConfigLoadError,
    ConfigurationError,
    ConfigValidationError,
)
from mailpool_mcp.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = Path("config/config.yaml")
CONFIG_PATH_ENV = "MAILPOOL_MCP_CONFIG"

# Environment variable -> (section, field)
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "MAILPOOL_API_KEY": ("directory", "api_key"),
    "MAILPOOL_API_BASE": ("directory", "api_base"),
    "ANTHROPIC_API_KEY": ("classifier", "api_key"),
    "API_KEY": ("server", "api_key"),
    "IMAP_HOST": ("imap", "default_host"),
    "IMAP_PORT": ("imap", "default_port"),
}


def _format_validation_errors(error: ValidationError) -> str:
    """Format Pydantic validation errors into actionable messages."""
    messages = []
    for err in error.errors():
        field_path = ".".join(str(loc) for loc in err["loc"])
        msg = err["msg"]
        err_type = err["type"]

        if err_type == "missing":
            messages.append(f"  - Missing required field '{field_path}'")
        elif err_type == "string_type":
            messages.append(f"  - Field '{field_path}' must be a string")
        elif err_type in ("int_type", "int_parsing"):
            messages.append(f"  - Field '{field_path}' must be an integer")
        else:
            messages.append(f"  - Field '{field_path}': {msg}")

    return "\n".join(messages)


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load and parse a YAML mapping.

    Raises:
        ConfigLoadError: If file not found or YAML parse error
    """
    if not path.exists():
        raise ConfigLoadError(
            f"Configuration file not found: {path}\n"
            f"Create it by copying config/config.yaml.example to {path}"
        )

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigLoadError(f"Failed to parse YAML in {path}:\n{e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigLoadError(
            f"Configuration file must be a YAML mapping, got {type(data).__name__}"
        )
    return data


def _apply_env_overrides(data: dict[str, Any], env: Mapping[str, str]) -> dict[str, Any]:
    """Overlay non-empty environment values onto the raw config mapping."""
    merged = dict(data)
    for var, (section, field) in ENV_OVERRIDES.items():
        value = env.get(var)
        if not value:
            continue
        section_data = merged.get(section)
        section_data = dict(section_data) if isinstance(section_data, dict) else {}
        section_data[field] = value
        merged[section] = section_data
    return merged


def _validate_config(data: dict[str, Any], source: str) -> AppConfig:
    """Validate config data against the Pydantic schema.

    Raises:
        ConfigValidationError: If validation fails
    """
    try:
        config = AppConfig(**data)
    except ValidationError as e:
        raise ConfigValidationError(
            f"Configuration validation failed for {source}:\n{_format_validation_errors(e)}"
        ) from e

    if config.schema_version > CURRENT_SCHEMA_VERSION:
        raise ConfigValidationError(
            f"Config schema version {config.schema_version} is newer than "
            f"supported version {CURRENT_SCHEMA_VERSION}. "
            "Please upgrade mailpool-mcp or downgrade the config."
        )
    return config


def _resolve_config_path(path: Path | None, env: Mapping[str, str]) -> tuple[Path, bool]:
    """Return the config path and whether it was explicitly requested."""
    if path is not None:
        return path, True
    env_path = env.get(CONFIG_PATH_ENV)
    if env_path:
        return Path(env_path), True
    return DEFAULT_CONFIG_PATH, False


def load_config(path: Path | None = None, env: Mapping[str, str] | None = None) -> AppConfig:
    """Load configuration from YAML plus environment overrides.

    The config file is optional unless it was requested explicitly (via the
    path argument or MAILPOOL_MCP_CONFIG); without one, defaults plus
    environment values are used.

    Args:
        path: Optional path to the config file
        env: Environment mapping (defaults to os.environ)

    Returns:
        Validated AppConfig instance

    Raises:
        ConfigLoadError: If an explicitly requested file cannot be loaded
        ConfigValidationError: If validation fails
    """
    env = os.environ if env is None else env
    config_path, explicit = _resolve_config_path(path, env)

    if explicit or config_path.exists():
        data = _load_yaml(config_path)
        source = str(config_path)
    else:
        data = {}
        source = "defaults"

    config = _validate_config(_apply_env_overrides(data, env), source)

    logger.info(
        "config_loaded",
        source=source,
        schema_version=config.schema_version,
        directory_key_set=config.directory.api_key is not None,
        classifier_key_set=config.classifier.api_key is not None,
    )
    return config


def validate_config_file(path: Path | None = None) -> tuple[bool, str]:
    """Validate a config file without starting anything.

    Returns:
        Tuple of (is_valid, message)
    """
    try:
        config = load_config(path)
    except ConfigLoadError as e:
        return (False, f"Load error: {e}")
    except ConfigValidationError as e:
        return (False, f"Validation error: {e}")

    def _state(value: str | None) -> str:
        return "set" if value else "missing"

    return (
        True,
        f"Configuration valid (schema version {config.schema_version})\n"
        f"  - directory: {config.directory.api_base} (api key {_state(config.directory.api_key)})\n"
        f"  - classifier: {config.classifier.model} (api key {_state(config.classifier.api_key)})\n"
        f"  - scan limits: inbox {config.scan.inbox_limit}, sent {config.scan.sent_limit}",
    )


def require_directory_key(config: AppConfig) -> str:
    """Return the Mailpool API key or fail before any I/O.

    Raises:
        ConfigurationError: If no key is configured
    """
    if not config.directory.api_key:
        raise ConfigurationError(
            "MAILPOOL_API_KEY is not set. Export it or set directory.api_key in config.yaml."
        )
    return config.directory.api_key


def require_classifier_key(config: AppConfig) -> str:
    """Return the Anthropic API key or fail before any I/O.

    Raises:
        ConfigurationError: If no key is configured
    """
    if not config.classifier.api_key:
        raise ConfigurationError(
            "ANTHROPIC_API_KEY is not set. Set it to enable auto-classification, "
            "or classify replies manually with the tag_email tool."
        )
    return config.classifier.api_key
