"""Environment variable loading and validation."""

import os
from typing import Optional

from dotenv import load_dotenv

from .exceptions import ConfigurationError

DEFAULT_DATABASE_URL = "sqlite:///./data/activity_notify.db"

_VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class EnvironmentConfig:
    """Environment variable configuration holder."""

    def __init__(
        self,
        database_url: Optional[str] = None,
        log_level: Optional[str] = None,
        smtp_host: Optional[str] = None,
        smtp_port: Optional[int] = None,
        smtp_user: Optional[str] = None,
        smtp_pass: Optional[str] = None,
        smtp_sender_name: Optional[str] = None,
    ):
        self.database_url = database_url or DEFAULT_DATABASE_URL
        self.log_level = log_level
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_pass = smtp_pass
        self.smtp_sender_name = smtp_sender_name or "Notifications"

    @property
    def smtp_configured(self) -> bool:
        """Whether enough SMTP settings are present to send email."""
        return bool(self.smtp_host and self.smtp_port)


def load_environment_config(dotenv: bool = True) -> EnvironmentConfig:
    """Load and validate environment variables.

    All variables are optional; SMTP settings are only needed when email
    delivery goes through the bundled SMTP sender.

    - DATABASE_URL: SQLAlchemy database URL (default: sqlite:///./data/activity_notify.db)
    - LOG_LEVEL: Override log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    - SMTP_HOST / SMTP_PORT: SMTP server for notification email
    - SMTP_USER / SMTP_PASS: SMTP credentials (both or neither)
    - SMTP_SENDER_NAME: Display name for the sender address

    Args:
        dotenv: Read a .env file from the working directory first

    Returns:
        EnvironmentConfig object with validated values

    Raises:
        ConfigurationError: If any variable is invalid
    """
    if dotenv:
        load_dotenv()

    errors = []

    database_url = os.getenv("DATABASE_URL")
    log_level = os.getenv("LOG_LEVEL")
    smtp_host = os.getenv("SMTP_HOST")
    smtp_port_str = os.getenv("SMTP_PORT")
    smtp_user = os.getenv("SMTP_USER")
    smtp_pass = os.getenv("SMTP_PASS")
    smtp_sender_name = os.getenv("SMTP_SENDER_NAME")

    smtp_port = None
    if smtp_port_str:
        try:
            smtp_port = int(smtp_port_str)
            if smtp_port < 1 or smtp_port > 65535:
                errors.append(f"Invalid SMTP_PORT: {smtp_port}. Must be between 1 and 65535.")
        except ValueError:
            errors.append(f"Invalid SMTP_PORT: '{smtp_port_str}'. Must be a valid integer.")

    if smtp_port_str and not smtp_host:
        errors.append("SMTP_PORT is set but SMTP_HOST is not.")

    if log_level and log_level.upper() not in _VALID_LOG_LEVELS:
        errors.append(
            f"Invalid LOG_LEVEL: '{log_level}'. Must be one of: {', '.join(_VALID_LOG_LEVELS)}"
        )

    if smtp_user and not smtp_pass:
        errors.append("SMTP_USER is set but SMTP_PASS is not. Both must be set for authentication.")
    elif smtp_pass and not smtp_user:
        errors.append("SMTP_PASS is set but SMTP_USER is not. Both must be set for authentication.")

    if errors:
        raise ConfigurationError(
            "Environment variable validation failed",
            errors=errors,
            suggestions=[
                "Check the variables exported in your shell or .env file",
                "Verify SMTP_PORT is a number between 1 and 65535",
            ],
        )

    return EnvironmentConfig(
        database_url=database_url,
        log_level=log_level.upper() if log_level else None,
        smtp_host=smtp_host,
        smtp_port=smtp_port,
        smtp_user=smtp_user,
        smtp_pass=smtp_pass,
        smtp_sender_name=smtp_sender_name,
    )
