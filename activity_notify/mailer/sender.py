"""Email delivery for notifications.

``EmailSender`` is the contract the dispatcher depends on;
``SMTPEmailSender`` renders the bundled Jinja2 templates and delivers them
through SMTP with retry and exponential backoff.
"""

import logging
import time
from abc import ABC, abstractmethod
from email.message import EmailMessage
from typing import Any, Callable, List, Optional

from activity_notify.config.environment import EnvironmentConfig
from activity_notify.config.models import EmailSettings
from activity_notify.domain.models import Notification
from activity_notify.domain.references import EntityRegistry
from activity_notify.exceptions import NotificationTemplateError, SMTPDeliveryError
from activity_notify.logging import get_logger
from activity_notify.logging.context import log_context

from .models import EmailResult
from .payloads import build_batch_context, build_notification_context
from .smtp_client import SMTPClient, build_sender_address, normalize_recipient
from .templates import TemplateRenderer

logger = get_logger(__name__, component="mailer")


class EmailSender(ABC):
    """Produces and sends notification email."""

    @abstractmethod
    def send(self, notification: Notification) -> EmailResult:
        """Send the email for one notification."""

    @abstractmethod
    def send_batch(
        self, target: Any, notifications: List[Notification], batch_key: Optional[str] = None
    ) -> EmailResult:
        """Send one email covering several notifications of a target."""


class SMTPEmailSender(EmailSender):
    """Sends notification email over SMTP.

    The recipient address comes from the target's ``notification_email()``;
    targets are loaded through the entity registry.
    """

    def __init__(
        self,
        env_config: EnvironmentConfig,
        registry: EntityRegistry,
        email_settings: Optional[EmailSettings] = None,
        template_renderer: Optional[TemplateRenderer] = None,
        batch_renderer: Optional[TemplateRenderer] = None,
        smtp_client: Optional[SMTPClient] = None,
        sleep: Callable[[float], None] = time.sleep,
        logger_instance: Optional[logging.Logger] = None,
    ):
        """Initialize sender.

        Args:
            env_config: Environment configuration with SMTP settings
            registry: Entity registry used to load targets
            email_settings: TLS and retry settings
            template_renderer: Renderer for single notifications (creates default if None)
            batch_renderer: Renderer for batch email (creates default if None)
            smtp_client: SMTP client instance (creates default if None)
            sleep: Function used to wait between retries
            logger_instance: Logger instance (uses module logger if None)
        """
        self.env_config = env_config
        self.registry = registry
        self.email_settings = email_settings or EmailSettings()
        self.template_renderer = template_renderer or TemplateRenderer()
        self.batch_renderer = batch_renderer or TemplateRenderer.for_batch()
        self.smtp_client = smtp_client or SMTPClient()
        self.sleep = sleep
        self.logger = logger_instance or logger

    def send(self, notification: Notification) -> EmailResult:
        ids = [notification.id]
        with log_context(notification_id=notification.id):
            target = self.registry.load(notification.target)
            if target is None:
                self.logger.warning(
                    f"Skipping email for notification {notification.id}: target {notification.target} not found",
                    extra={"event": "mailer.skip", "reason": "target_missing"},
                )
                return EmailResult(notification_ids=ids, status="skipped", reason="target_missing")

            context = build_notification_context(notification, target.printable_target_name())
            return self._deliver(ids, target, self.template_renderer, context)

    def send_batch(
        self, target: Any, notifications: List[Notification], batch_key: Optional[str] = None
    ) -> EmailResult:
        ids = [n.id for n in notifications]
        batch_key = batch_key or (notifications[0].key if notifications else None)
        with log_context(batch_key=batch_key):
            context = build_batch_context(notifications, target.printable_target_name(), batch_key)
            return self._deliver(ids, target, self.batch_renderer, context)

    def _deliver(self, ids: List[int], target: Any, renderer: TemplateRenderer, context: dict) -> EmailResult:
        if not self.env_config.smtp_configured:
            self.logger.warning(
                "Skipping email: SMTP is not configured",
                extra={"event": "mailer.skip", "reason": "smtp_not_configured"},
            )
            return EmailResult(notification_ids=ids, status="skipped", reason="smtp_not_configured")

        address = target.notification_email()
        if not address:
            self.logger.info(
                f"Skipping email: {target.to_entity_ref()} has no email address",
                extra={"event": "mailer.skip", "reason": "no_address"},
            )
            return EmailResult(notification_ids=ids, status="skipped", reason="no_address")

        try:
            recipient = normalize_recipient(address)
            rendered = renderer.render(context)
        except (ValueError, NotificationTemplateError) as e:
            error_msg = f"Failed to build notification email: {e}"
            self.logger.error(error_msg, extra={"event": "mailer.build.failure"})
            return EmailResult(notification_ids=ids, status="failed", error=error_msg)

        message = EmailMessage()
        message["Subject"] = rendered["subject"]
        message["From"] = build_sender_address(self.env_config)
        message["To"] = recipient
        message.set_content(rendered["text_body"])
        message.add_alternative(rendered["html_body"], subtype="html")

        return self._send_with_retry(ids, recipient, message)

    def _send_with_retry(self, ids: List[int], recipient: str, message: EmailMessage) -> EmailResult:
        settings = self.email_settings
        max_attempts = settings.max_retries + 1
        last_error = None

        for attempt in range(1, max_attempts + 1):
            if attempt > 1:
                delay = settings.retry_initial_delay * (settings.retry_backoff_multiplier ** (attempt - 2))
                # Clamp to 60 seconds
                delay = min(delay, 60.0)
                self.logger.warning(
                    f"Retrying email to {recipient} (attempt {attempt}/{max_attempts}) after {delay:.1f}s delay",
                    extra={"event": "mailer.send.attempt", "attempt": attempt},
                )
                self.sleep(delay)

            try:
                self.smtp_client.send(message, self.env_config, settings.use_tls)
                self.logger.info(
                    f"Notification email sent to {recipient} (attempts: {attempt})",
                    extra={
                        "event": "mailer.send.success",
                        "attempt": attempt,
                        "notification_ids": ids,
                    },
                )
                return EmailResult(notification_ids=ids, status="sent", attempts=attempt, recipient=recipient)

            except SMTPDeliveryError as e:
                last_error = str(e)
                if attempt < max_attempts:
                    self.logger.warning(
                        f"SMTP delivery failed (attempt {attempt}/{max_attempts}): {e}",
                        extra={
                            "event": "mailer.send.failure",
                            "attempt": attempt,
                            "error_type": type(e).__name__,
                            "retry_remaining": True,
                        },
                    )
                else:
                    self.logger.error(
                        f"SMTP delivery failed after {max_attempts} attempts: {e}",
                        exc_info=True,
                        extra={
                            "event": "mailer.send.failure",
                            "attempt": attempt,
                            "error_type": type(e).__name__,
                            "retry_remaining": False,
                        },
                    )

        return EmailResult(
            notification_ids=ids,
            status="failed",
            attempts=max_attempts,
            recipient=recipient,
            error=last_error,
        )
