"""SMTP client wrapper for email delivery.

This module provides a thin wrapper around Python's smtplib with support
for TLS/SSL, authentication, and proper connection lifecycle management.
"""

import logging
import smtplib
import ssl
from email.message import EmailMessage
from typing import Callable, Optional

from email_validator import EmailNotValidError, validate_email

from activity_notify.config.environment import EnvironmentConfig
from activity_notify.exceptions import SMTPDeliveryError

logger = logging.getLogger(__name__)


class SMTPClient:
    """Wrapper around smtplib for sending email messages.

    Handles connection lifecycle, TLS/SSL negotiation and authentication.
    Designed to be easily mockable for testing.
    """

    def __init__(
        self,
        smtp_factory: Optional[Callable] = None,
        smtp_ssl_factory: Optional[Callable] = None,
    ):
        """Initialize SMTP client with optional factory injection.

        Args:
            smtp_factory: Factory function for creating SMTP instances (for mocking)
            smtp_ssl_factory: Factory function for creating SMTP_SSL instances (for mocking)
        """
        self.smtp_factory = smtp_factory or smtplib.SMTP
        self.smtp_ssl_factory = smtp_ssl_factory or smtplib.SMTP_SSL

    def send(
        self,
        message: EmailMessage,
        env_config: EnvironmentConfig,
        use_tls: bool = True,
    ) -> None:
        """Send an email message via SMTP.

        Args:
            message: Fully constructed EmailMessage to send
            env_config: Environment configuration with SMTP settings
            use_tls: Whether to use TLS (STARTTLS or implicit SSL)

        Raises:
            SMTPDeliveryError: If message delivery fails
        """
        smtp = None
        try:
            if env_config.smtp_port == 465:
                # Port 465: Implicit TLS
                logger.debug(
                    f"Connecting to {env_config.smtp_host}:{env_config.smtp_port} with implicit TLS"
                )
                context = ssl.create_default_context()
                smtp = self.smtp_ssl_factory(
                    env_config.smtp_host, env_config.smtp_port, context=context
                )
            else:
                logger.debug(f"Connecting to {env_config.smtp_host}:{env_config.smtp_port}")
                smtp = self.smtp_factory(env_config.smtp_host, env_config.smtp_port)

                if use_tls:
                    logger.debug("Upgrading connection with STARTTLS")
                    context = ssl.create_default_context()
                    smtp.starttls(context=context)

            if env_config.smtp_user and env_config.smtp_pass:
                logger.debug(f"Authenticating as {env_config.smtp_user}")
                smtp.login(env_config.smtp_user, env_config.smtp_pass)
            else:
                logger.debug("No authentication credentials provided, proceeding without auth")

            smtp.send_message(message)
            logger.debug(f"Message sent successfully to {message['To']}")

        except smtplib.SMTPException as e:
            error_msg = f"SMTP error during message delivery: {e}"
            logger.error(error_msg)
            raise SMTPDeliveryError(error_msg) from e
        except OSError as e:
            error_msg = f"Network error during SMTP connection: {e}"
            logger.error(error_msg)
            raise SMTPDeliveryError(error_msg) from e
        finally:
            if smtp is not None:
                try:
                    smtp.quit()
                except (smtplib.SMTPException, OSError) as e:
                    logger.warning(f"Error closing SMTP connection: {e}")


def normalize_recipient(address: str) -> str:
    """Validate and normalize a single recipient address.

    Args:
        address: Email address

    Returns:
        Normalized email address

    Raises:
        ValueError: If the address is invalid
    """
    try:
        return validate_email(address.strip(), check_deliverability=False).normalized
    except EmailNotValidError as e:
        raise ValueError(f"Invalid recipient email address '{address}': {e}") from e


def build_sender_address(env_config: EnvironmentConfig) -> str:
    """Build the 'From' address for outgoing emails.

    Uses SMTP_SENDER_NAME with SMTP_USER if available, otherwise falls back
    to a noreply address at the SMTP host.

    Args:
        env_config: Environment configuration with SMTP settings

    Returns:
        Formatted sender address (e.g., "Notifications <user@example.com>")
    """
    if env_config.smtp_user:
        sender_email = env_config.smtp_user
    else:
        sender_email = f"noreply@{env_config.smtp_host}"

    return f"{env_config.smtp_sender_name} <{sender_email}>"
