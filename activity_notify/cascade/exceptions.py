"""Exceptions raised by the cascade scheduler."""

from activity_notify.config.exceptions import ConfigurationError


class CascadeConfigurationError(ConfigurationError):
    """Raised when a cascade configuration fails validation."""

    pass
