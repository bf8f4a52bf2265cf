"""Multi-step delayed delivery through optional channels."""

from .exceptions import CascadeConfigurationError
from .models import NOOP, CascadeStep, CascadeStepResult, StepStatus, ValidationResult
from .scheduler import CascadeScheduler
from .validation import ensure_valid, normalize_config, validate_config

__all__ = [
    "CascadeScheduler",
    "CascadeStep",
    "CascadeStepResult",
    "StepStatus",
    "NOOP",
    "ValidationResult",
    "validate_config",
    "ensure_valid",
    "normalize_config",
    "CascadeConfigurationError",
]
