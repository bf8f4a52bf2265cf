"""Configuration management for activity_notify."""

from .duration import DurationParseError, parse_duration, to_seconds
from .environment import EnvironmentConfig, load_environment_config
from .exceptions import ConfigurationError
from .loader import load_config, parse_config
from .models import (
    AppConfig,
    CascadeSettings,
    EmailSettings,
    LogFormat,
    LoggingSettings,
    LogLevel,
    MissingDelayPolicy,
    NotificationSettings,
    SchedulerSettings,
    SubscriptionSettings,
)

__all__ = [
    # Loader functions
    "load_config",
    "parse_config",
    "load_environment_config",
    # Configuration models
    "AppConfig",
    "NotificationSettings",
    "SubscriptionSettings",
    "CascadeSettings",
    "SchedulerSettings",
    "EmailSettings",
    "LoggingSettings",
    "EnvironmentConfig",
    # Enums
    "LogLevel",
    "LogFormat",
    "MissingDelayPolicy",
    # Durations
    "parse_duration",
    "to_seconds",
    "DurationParseError",
    # Exceptions
    "ConfigurationError",
]
