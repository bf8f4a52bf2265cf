"""Cascade step and result types."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class StepStatus(str, Enum):
    """Outcome of firing one cascade step."""

    SUCCESS = "success"
    NOT_CONFIGURED = "not_configured"
    NOT_SUBSCRIBED = "not_subscribed"
    FAILED = "failed"
    NOOP = "noop"


@dataclass(frozen=True)
class CascadeStep:
    """One normalized cascade step.

    Attributes:
        target: Name of the optional channel to fire
        delay: Seconds to wait before firing, None when the step has no delay
        options: Options passed to the channel's ``notify``
    """

    target: str
    delay: Optional[float] = None
    options: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        """Plain mapping form carried in scheduled task arguments."""
        return {"target": self.target, "delay": self.delay, "options": dict(self.options)}


@dataclass(frozen=True)
class CascadeStepResult:
    """Result of ``CascadeScheduler.fire_step``.

    ``error`` holds the rescued exception when status is FAILED.
    """

    channel: Optional[str]
    status: StepStatus
    error: Optional[BaseException] = None

    @property
    def is_noop(self) -> bool:
        return self.status == StepStatus.NOOP

    def as_dict(self) -> Dict[str, Any]:
        """Channel name mapped to its status, or to the error for rescued failures."""
        if self.status == StepStatus.FAILED and self.error is not None:
            return {self.channel: self.error}
        return {self.channel: self.status.value}


# Returned when a step finds nothing to do: the notification is gone or read
NOOP = CascadeStepResult(channel=None, status=StepStatus.NOOP)


@dataclass
class ValidationResult:
    """Outcome of validating a cascade configuration."""

    valid: bool
    errors: List[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.valid
