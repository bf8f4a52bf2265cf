"""Configuration loader for activity_notify."""

from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError

from .environment import EnvironmentConfig, load_environment_config
from .exceptions import ConfigurationError
from .models import AppConfig

DEFAULT_CONFIG_LOCATIONS = (
    Path("config.yaml"),
    Path("config") / "config.yaml",
)


def load_config(config_path: Optional[Path] = None) -> tuple[AppConfig, EnvironmentConfig]:
    """Load and validate configuration from a YAML file and environment variables.

    Config file lookup:
    1. Use config_path if given
    2. Try config.yaml in the current directory
    3. Try ./config/config.yaml
    4. Fail with a helpful error message

    Args:
        config_path: Optional path to configuration file

    Returns:
        Tuple of (AppConfig, EnvironmentConfig)

    Raises:
        ConfigurationError: If configuration is invalid or no file is found
    """
    config_file = _find_config_file(config_path)
    config_dict = _read_yaml(config_file)
    app_config = parse_config(config_dict)

    try:
        env_config = load_environment_config()
    except ConfigurationError:
        raise
    except Exception as e:
        raise ConfigurationError(f"Failed to load environment configuration: {e}") from e

    if env_config.log_level:
        app_config.logging.level = env_config.log_level

    return app_config, env_config


def parse_config(config_dict: Optional[Dict[str, Any]]) -> AppConfig:
    """Validate a raw configuration mapping.

    An empty mapping (or None) yields the all-defaults configuration.

    Raises:
        ConfigurationError: Listing every validation error found
    """
    try:
        return AppConfig.model_validate(config_dict or {})
    except ValidationError as e:
        errors = []
        for error in e.errors():
            field_path = " -> ".join(str(loc) for loc in error["loc"])
            if error["type"] == "missing":
                errors.append(f"Missing required field: {field_path}")
            elif error["type"] == "extra_forbidden":
                errors.append(f"Unknown field: {field_path}")
            else:
                errors.append(f"{field_path}: {error['msg']}")

        raise ConfigurationError(
            "Configuration validation failed",
            errors=errors,
            suggestions=[
                "Check that all values have the expected types",
                "Remove settings that are not part of the configuration schema",
            ],
        ) from e


def _read_yaml(config_file: Path) -> Dict[str, Any]:
    try:
        with open(config_file, "r") as f:
            config_dict = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Failed to parse YAML configuration: {e}",
            suggestions=[
                "Check YAML syntax in your config file",
                "Ensure proper indentation (use spaces, not tabs)",
            ],
        ) from e
    except OSError as e:
        raise ConfigurationError(
            f"Failed to read configuration file: {e}",
            suggestions=[f"Ensure {config_file} is readable"],
        ) from e

    if config_dict is None:
        return {}

    if not isinstance(config_dict, dict):
        raise ConfigurationError(
            "Configuration file must contain a mapping at the top level",
            errors=[f"Got {type(config_dict).__name__}"],
        )

    return config_dict


def _find_config_file(config_path: Optional[Path] = None) -> Path:
    """Find the configuration file.

    Raises:
        ConfigurationError: If no config file is found
    """
    if config_path:
        if not config_path.exists():
            raise ConfigurationError(
                f"Specified configuration file not found: {config_path}",
                suggestions=[f"Ensure {config_path} exists"],
            )
        return config_path

    for candidate in DEFAULT_CONFIG_LOCATIONS:
        if candidate.exists():
            return candidate

    raise ConfigurationError(
        "Configuration file not found",
        errors=[f"Tried: {candidate}" for candidate in DEFAULT_CONFIG_LOCATIONS],
        suggestions=[
            "Create a config.yaml file in the current directory",
            "Pass an explicit path to load_config()",
            "Use AppConfig() directly to run with defaults",
        ],
    )
