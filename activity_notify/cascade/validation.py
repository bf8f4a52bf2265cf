"""Cascade configuration validation and normalization.

A cascade configuration is an ordered list of step mappings::

    [
        {"delay": "10m", "target": "slack"},
        {"delay": timedelta(hours=1), "target": "sms", "options": {"urgent": True}},
    ]

Validation collects every problem rather than stopping at the first one.
"""

from collections.abc import Mapping
from typing import Any, Dict, List, Sequence

from activity_notify.config.duration import DurationParseError, to_seconds

from .exceptions import CascadeConfigurationError
from .models import CascadeStep, ValidationResult


def validate_config(config: Any) -> ValidationResult:
    """Validate a cascade configuration.

    Args:
        config: Cascade configuration to check

    Returns:
        ValidationResult with every error found
    """
    errors: List[str] = []

    if config is None:
        return ValidationResult(valid=False, errors=["cascade_config cannot be None"])

    if isinstance(config, (str, bytes, Mapping)) or not isinstance(config, Sequence):
        return ValidationResult(valid=False, errors=["cascade_config must be a list"])

    if len(config) == 0:
        errors.append("cascade_config cannot be empty")

    for index, step in enumerate(config):
        if not isinstance(step, Mapping):
            errors.append(f"Step {index} must be a mapping")
            continue

        target = step.get("target")
        if target is None:
            errors.append(f"Step {index} missing required :target parameter")
        elif not isinstance(target, str):
            errors.append(f"Step {index} :target must be a string")

        delay = step.get("delay")
        if delay is None:
            errors.append(f"Step {index} missing :delay parameter")
        else:
            try:
                to_seconds(delay)
            except DurationParseError:
                errors.append(
                    f"Step {index} :delay must be a timedelta, non-negative seconds or a duration string"
                )

        options = step.get("options")
        if options and not isinstance(options, Mapping):
            errors.append(f"Step {index} :options must be a mapping")

    return ValidationResult(valid=not errors, errors=errors)


def ensure_valid(config: Any) -> None:
    """Raise if the configuration is invalid.

    Raises:
        CascadeConfigurationError: With every validation error found
    """
    result = validate_config(config)
    if not result.valid:
        raise CascadeConfigurationError(
            "Invalid cascade configuration: " + ", ".join(result.errors),
            errors=result.errors,
        )


def normalize_step(step: Mapping) -> CascadeStep:
    """Convert a raw step mapping into a CascadeStep with delay in seconds.

    Raises:
        CascadeConfigurationError: If the target is missing or the delay is unparsable
    """
    target = step.get("target")
    if target is None:
        raise CascadeConfigurationError("Cascade step is missing its target")

    delay = step.get("delay")
    try:
        seconds = to_seconds(delay) if delay is not None else None
    except DurationParseError as e:
        raise CascadeConfigurationError(f"Invalid delay for cascade step '{target}': {e}") from e

    return CascadeStep(target=str(target), delay=seconds, options=dict(step.get("options") or {}))


def normalize_config(config: Sequence[Mapping]) -> List[Dict[str, Any]]:
    """Normalize every step into the payload form passed to scheduled tasks."""
    return [normalize_step(step).to_payload() for step in config]
