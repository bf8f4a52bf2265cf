"""Wiring for the notification components.

``NotificationSystem.from_config`` builds every component from loaded
configuration the way an embedding application would: logging, database,
task scheduler, store, subscription resolver, email sender, dispatcher and
cascade scheduler.
"""

import os
from pathlib import Path
from typing import Optional

from activity_notify.cascade.scheduler import CascadeScheduler
from activity_notify.config.environment import EnvironmentConfig
from activity_notify.config.loader import load_config
from activity_notify.config.models import AppConfig
from activity_notify.delivery.dispatcher import DeliveryDispatcher
from activity_notify.domain.references import EntityRegistry
from activity_notify.grouping.store import NotificationStore
from activity_notify.logging import get_logger
from activity_notify.logging.config import configure_logging
from activity_notify.mailer.sender import EmailSender, SMTPEmailSender
from activity_notify.persistence.database import close_database, init_database
from activity_notify.scheduler.service import BackgroundTaskScheduler, TaskScheduler
from activity_notify.subscriptions.resolver import SubscriptionResolver

logger = get_logger(__name__, component="service")


class NotificationSystem:
    """Holds the wired notification components."""

    def __init__(
        self,
        app_config: AppConfig,
        env_config: EnvironmentConfig,
        registry: EntityRegistry,
        scheduler: TaskScheduler,
        email_sender: Optional[EmailSender] = None,
    ):
        self.app_config = app_config
        self.env_config = env_config
        self.registry = registry
        self.scheduler = scheduler

        self.store = NotificationStore(app_config.notifications)
        self.resolver = SubscriptionResolver(app_config.subscriptions)
        self.email_sender = email_sender
        self.dispatcher = DeliveryDispatcher(
            self.store,
            self.resolver,
            scheduler,
            email_sender=email_sender,
            registry=registry,
            settings=app_config.notifications,
        )
        self.cascades = CascadeScheduler(
            self.store,
            self.resolver,
            scheduler,
            registry,
            notification_settings=app_config.notifications,
            cascade_settings=app_config.cascade,
        )

    @classmethod
    def from_config(
        cls,
        registry: EntityRegistry,
        config_path: Optional[Path] = None,
        app_config: Optional[AppConfig] = None,
        env_config: Optional[EnvironmentConfig] = None,
        scheduler: Optional[TaskScheduler] = None,
        configure_logs: bool = True,
    ) -> "NotificationSystem":
        """Build the system from a YAML file or from given configuration objects.

        Args:
            registry: Entity registry with loaders for every target and notifiable kind
            config_path: Configuration file, used when app_config is not given
            app_config: Already loaded application configuration
            env_config: Already loaded environment configuration
            scheduler: Task scheduler (a BackgroundTaskScheduler when None)
            configure_logs: Configure root logging from the configuration

        Raises:
            ConfigurationError: If the configuration file is invalid
            DatabaseConnectionError: If the database cannot be initialized
        """
        if app_config is None or env_config is None:
            loaded_app, loaded_env = load_config(config_path)
            app_config = app_config or loaded_app
            env_config = env_config or loaded_env

        if configure_logs:
            configure_logging(
                level=env_config.log_level or app_config.logging.level,
                format_type=app_config.logging.format,
                environment=os.environ.get("ENVIRONMENT", "local"),
            )

        init_database(env_config.database_url)

        scheduler = scheduler or BackgroundTaskScheduler(app_config.scheduler)
        email_sender = None
        if app_config.notifications.email_enabled:
            email_sender = SMTPEmailSender(env_config, registry, email_settings=app_config.email)

        logger.info(
            "Notification system configured",
            extra={
                "event": "service.configured",
                "email_enabled": app_config.notifications.email_enabled,
                "smtp_configured": env_config.smtp_configured,
                "missing_delay_policy": app_config.cascade.missing_delay_policy,
            },
        )
        return cls(app_config, env_config, registry, scheduler, email_sender=email_sender)

    def start(self) -> None:
        """Start the background scheduler if there is one."""
        if isinstance(self.scheduler, BackgroundTaskScheduler) and not self.scheduler.is_running():
            self.scheduler.start()

    def shutdown(self, wait: bool = False) -> None:
        """Stop the scheduler and release database connections."""
        if isinstance(self.scheduler, BackgroundTaskScheduler) and self.scheduler.is_running():
            self.scheduler.shutdown(wait=wait)
        close_database()
        logger.info("Notification system stopped", extra={"event": "service.stopped"})
