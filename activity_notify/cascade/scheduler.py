"""Cascade scheduler.

A cascade delivers a notification through a sequence of optional channels,
each after its own delay, and stops as soon as the notification is read.
Each step runs as a scheduled task ``fire_step(notification_id, config,
step_index)``; the task re-reads the notification before firing, so opening
a notification is the only cancellation a cascade needs.

Example:
    >>> cascades.cascade_notify(notification, [
    ...     {"delay": "10m", "target": "slack"},
    ...     {"delay": "1h", "target": "sms"},
    ... ])
    True
"""

from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from activity_notify.config.models import (
    CascadeSettings,
    MissingDelayPolicy,
    NotificationSettings,
)
from activity_notify.domain.models import Notification
from activity_notify.domain.references import EntityRegistry
from activity_notify.grouping.store import NotificationStore
from activity_notify.logging import get_logger
from activity_notify.logging.context import log_context
from activity_notify.scheduler.service import TaskScheduler
from activity_notify.subscriptions.resolver import SubscriptionResolver

from .models import NOOP, CascadeStepResult, StepStatus
from .validation import ensure_valid, normalize_config

logger = get_logger(__name__, component="cascade")

CascadeConfig = Sequence[Mapping[str, Any]]


class CascadeScheduler:
    """Schedules and fires cascade steps for notifications."""

    def __init__(
        self,
        store: NotificationStore,
        resolver: SubscriptionResolver,
        scheduler: TaskScheduler,
        registry: EntityRegistry,
        notification_settings: Optional[NotificationSettings] = None,
        cascade_settings: Optional[CascadeSettings] = None,
    ):
        """Initialize cascade scheduler.

        Args:
            store: Notification store used to reload notifications
            resolver: Subscription resolver for the channel gate
            scheduler: Task scheduler that runs delayed steps
            registry: Entity registry used to load notifiables at fire time
            notification_settings: Settings holding the error rescue policy
            cascade_settings: Missing delay policy
        """
        self.store = store
        self.resolver = resolver
        self.scheduler = scheduler
        self.registry = registry
        self.notification_settings = notification_settings or store.settings
        self.cascade_settings = cascade_settings or CascadeSettings()

    @property
    def missing_delay_policy(self) -> MissingDelayPolicy:
        return MissingDelayPolicy(self.cascade_settings.missing_delay_policy)

    def cascade_notify(
        self,
        notification: Union[Notification, int],
        config: CascadeConfig,
        validate: bool = True,
        trigger_first_immediately: bool = False,
    ) -> bool:
        """Start a cascade for a notification.

        Args:
            notification: Notification (or its id) to cascade
            config: Ordered list of steps with ``target``, ``delay`` and optional ``options``
            validate: Validate the configuration before scheduling
            trigger_first_immediately: Fire step 0 in-process, ignoring its delay

        Returns:
            True when the cascade was started, False for an empty config or a
            notification that is already read (or gone)

        Raises:
            CascadeConfigurationError: If validation is on and the config is invalid
        """
        if validate:
            ensure_valid(config)

        if not config:
            return False

        current = self.store.reload(notification)
        if current is None or current.is_opened:
            logger.debug(
                "Not starting cascade: notification is read or missing",
                extra={"event": "cascade.skip"},
            )
            return False

        steps = normalize_config(config)

        with log_context(notification_id=current.id):
            if trigger_first_immediately:
                self._perform_step(current, steps[0])
                remaining = steps[1:]
                if remaining:
                    self._schedule_step(current.id, remaining, 0)
            else:
                delay = steps[0]["delay"]
                self._enqueue(current.id, steps, 0, delay if delay is not None else 0)

            logger.info(
                f"Cascade started with {len(steps)} step(s)",
                extra={
                    "event": "cascade.started",
                    "steps": [step["target"] for step in steps],
                    "trigger_first_immediately": trigger_first_immediately,
                },
            )
        return True

    def fire_step(self, notification_id: int, config: CascadeConfig, step_index: int = 0) -> CascadeStepResult:
        """Fire one cascade step and schedule the next.

        Scheduled task entry point. Safe to run more than once: a read or
        deleted notification turns every step into a no-op.

        Returns:
            Result of the step, or ``NOOP`` when there was nothing to do

        Raises:
            Exception: Whatever the channel raised, when error rescue is off
        """
        with log_context(notification_id=notification_id, step_index=step_index):
            notification = self.store.reload(notification_id)
            if notification is None:
                logger.info(
                    f"Cascade stopped: notification {notification_id} no longer exists",
                    extra={"event": "cascade.step.noop", "reason": "missing"},
                )
                return NOOP
            if notification.is_opened:
                logger.info(
                    f"Cascade stopped: notification {notification_id} was read",
                    extra={"event": "cascade.step.noop", "reason": "opened"},
                )
                return NOOP
            if not 0 <= step_index < len(config):
                return NOOP

            steps = normalize_config(config)
            result = self._perform_step(notification, steps[step_index])

            next_index = step_index + 1
            if next_index < len(steps):
                self._schedule_step(notification_id, steps, next_index)
            else:
                logger.debug("Cascade finished", extra={"event": "cascade.finished"})

        return result

    def _schedule_step(self, notification_id: int, steps: List[Dict[str, Any]], index: int) -> None:
        delay = steps[index]["delay"]
        if delay is None:
            if self.missing_delay_policy != MissingDelayPolicy.IMMEDIATE:
                logger.info(
                    f"Cascade stopped: step {index} has no delay",
                    extra={"event": "cascade.stopped", "reason": "missing_delay"},
                )
                return
            delay = 0
        self._enqueue(notification_id, steps, index, delay)

    def _enqueue(self, notification_id: int, steps: List[Dict[str, Any]], index: int, delay: float) -> None:
        self.scheduler.schedule(delay, self.fire_step, notification_id, steps, index)
        logger.debug(
            f"Scheduled cascade step {index} ({steps[index]['target']}) in {delay}s",
            extra={"event": "cascade.step.scheduled", "next_step": index, "delay": delay},
        )

    def _perform_step(self, notification: Notification, step: Mapping[str, Any]) -> CascadeStepResult:
        name = step["target"]
        notifiable = self.registry.load(notification.notifiable)
        channels = (
            notifiable.optional_channels(notification.target.kind, notification.key)
            if notifiable is not None
            else []
        )
        channel = next((c for c in channels if c.name == name), None)

        if channel is None:
            logger.warning(
                f"Optional channel '{name}' not found for notification {notification.id}",
                extra={"event": "cascade.step.not_configured", "channel": name},
            )
            return CascadeStepResult(channel=name, status=StepStatus.NOT_CONFIGURED)

        if not self.resolver.subscribed_to_channel(notification.target, notification.key, name):
            logger.info(
                f"Target not subscribed to optional channel '{name}' for notification {notification.id}",
                extra={"event": "cascade.step.not_subscribed", "channel": name},
            )
            return CascadeStepResult(channel=name, status=StepStatus.NOT_SUBSCRIBED)

        try:
            channel.notify(notification, step.get("options") or {})
        except Exception as e:
            logger.error(
                f"Failed to trigger optional channel '{name}' for notification {notification.id}: {e}",
                exc_info=True,
                extra={"event": "cascade.step.failure", "channel": name, "error_type": type(e).__name__},
            )
            if not self.notification_settings.rescue_optional_target_errors:
                raise
            return CascadeStepResult(channel=name, status=StepStatus.FAILED, error=e)

        logger.info(
            f"Triggered optional channel '{name}' for notification {notification.id}",
            extra={"event": "cascade.step.success", "channel": name},
        )
        return CascadeStepResult(channel=name, status=StepStatus.SUCCESS)
