"""Configuration schema models using Pydantic."""

from enum import Enum

from pydantic import BaseModel, Field


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(str, Enum):
    """Log output formats."""

    JSON = "json"
    KEY_VALUE = "key-value"


class MissingDelayPolicy(str, Enum):
    """How a cascade treats a step without a delay.

    LEGACY keeps the historical asymmetry: a missing delay on the first
    scheduled step fires it immediately, while a missing delay on any later
    step ends the cascade. IMMEDIATE fires every delay-less step right away.
    """

    LEGACY = "legacy"
    IMMEDIATE = "immediate"


class NotificationSettings(BaseModel):
    """Notification store and delivery settings."""

    opened_index_limit: int = Field(
        10, ge=1, description="Default number of opened notifications in an index page"
    )
    email_enabled: bool = Field(
        False, description="Whether notification email is sent at all"
    )
    rescue_optional_target_errors: bool = Field(
        True, description="Capture optional channel errors as results instead of raising"
    )
    notify_batch_size: int = Field(
        500, ge=1, description="Targets processed per batch when fanning out notifications"
    )


class SubscriptionSettings(BaseModel):
    """Defaults used when a target has no subscription record for a key."""

    subscribe_as_default: bool = Field(
        True, description="Treat unconfigured targets as subscribed to notifications"
    )
    subscribe_to_email_as_default: bool = Field(
        True, description="Treat unconfigured targets as subscribed to notification email"
    )
    subscribe_to_optional_targets_as_default: bool = Field(
        True, description="Treat unconfigured targets as subscribed to optional channels"
    )


class CascadeSettings(BaseModel):
    """Cascade scheduler behaviour."""

    missing_delay_policy: MissingDelayPolicy = Field(
        MissingDelayPolicy.LEGACY, description="Handling of cascade steps without a delay"
    )

    model_config = {"use_enum_values": True}


class SchedulerSettings(BaseModel):
    """Background task scheduler settings."""

    misfire_grace_time: int = Field(
        300, ge=1, description="Seconds a delayed task may run late before being dropped"
    )
    timezone: str = Field("UTC", min_length=1, description="Scheduler timezone")


class EmailSettings(BaseModel):
    """Email delivery settings."""

    use_tls: bool = Field(True, description="Use TLS/STARTTLS for secure connection")
    max_retries: int = Field(
        3, ge=0, le=10, description="Number of retry attempts for failed email sends"
    )
    retry_backoff_multiplier: float = Field(
        2.0, ge=1.0, le=5.0, description="Exponential backoff multiplier for retries"
    )
    retry_initial_delay: int = Field(
        5, ge=1, le=60, description="Initial retry delay in seconds"
    )


class LoggingSettings(BaseModel):
    """Logging configuration."""

    level: LogLevel = Field(LogLevel.INFO, description="Log level")
    format: LogFormat = Field(
        LogFormat.KEY_VALUE, description="Log output format (json or key-value)"
    )

    model_config = {"use_enum_values": True}


class AppConfig(BaseModel):
    """Root configuration object for activity_notify.

    Every section has defaults, so ``AppConfig()`` is a complete working
    configuration for embedding applications that do not ship a YAML file.
    """

    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    subscriptions: SubscriptionSettings = Field(default_factory=SubscriptionSettings)
    cascade: CascadeSettings = Field(default_factory=CascadeSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    email: EmailSettings = Field(default_factory=EmailSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
