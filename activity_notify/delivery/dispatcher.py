"""Delivery dispatcher.

Fans a notifiable out to its targets: one stored notification per
subscribed target, followed by notification email sent right away or through
the task scheduler.
"""

from itertools import islice
from typing import Any, Callable, Iterable, Iterator, List, Mapping, Optional

from activity_notify.config.models import NotificationSettings
from activity_notify.domain.models import Notification
from activity_notify.domain.references import EntityRef, EntityRegistry, to_ref
from activity_notify.grouping.store import NotificationStore
from activity_notify.logging import get_logger
from activity_notify.logging.context import log_context
from activity_notify.mailer.models import EmailResult
from activity_notify.mailer.sender import EmailSender
from activity_notify.scheduler.service import TaskScheduler
from activity_notify.subscriptions.resolver import SubscriptionResolver

logger = get_logger(__name__, component="delivery")


class DeliveryDispatcher:
    """Creates notifications for targets and triggers their email."""

    def __init__(
        self,
        store: NotificationStore,
        resolver: SubscriptionResolver,
        scheduler: TaskScheduler,
        email_sender: Optional[EmailSender] = None,
        registry: Optional[EntityRegistry] = None,
        settings: Optional[NotificationSettings] = None,
    ):
        """Initialize dispatcher.

        Args:
            store: Notification store
            resolver: Subscription resolver used for the creation and email gates
            scheduler: Task scheduler for deferred email
            email_sender: Email sender; email is skipped when None
            registry: Entity registry used to reload targets and notifiables in deferred jobs
            settings: Notification settings (email_enabled, notify_batch_size)
        """
        self.store = store
        self.resolver = resolver
        self.scheduler = scheduler
        self.email_sender = email_sender
        self.registry = registry or EntityRegistry()
        self.settings = settings or store.settings

    def notify(
        self, target_kind: str, notifiable: Any, options: Optional[Mapping[str, Any]] = None
    ) -> List[Notification]:
        """Notify every target of a kind resolved by the notifiable.

        Returns:
            Created notifications (empty when the notifiable has no targets)
        """
        options = dict(options or {})
        targets = notifiable.notification_targets(target_kind, options.get("key"))
        if not targets:
            logger.debug(
                f"No {target_kind} targets for {to_ref(notifiable)}",
                extra={"event": "delivery.no_targets", "target_kind": target_kind},
            )
            return []
        return self.notify_all(targets, notifiable, options)

    def notify_all(
        self, targets: Iterable[Any], notifiable: Any, options: Optional[Mapping[str, Any]] = None
    ) -> List[Notification]:
        """Notify each target; see iter_notify_all for streaming."""
        return list(self.iter_notify_all(targets, notifiable, options))

    def iter_notify_all(
        self, targets: Iterable[Any], notifiable: Any, options: Optional[Mapping[str, Any]] = None
    ) -> Iterator[Notification]:
        """Notify targets batch by batch, yielding created notifications.

        Targets are consumed lazily in batches of ``notify_batch_size`` so
        query cursors and generators are never materialized in full.
        """
        options = dict(options or {})
        batch_size = self.settings.notify_batch_size
        iterator = iter(targets)
        batch_number = 0

        while True:
            batch = list(islice(iterator, batch_size))
            if not batch:
                break
            batch_number += 1
            created = 0
            for target in batch:
                notification = self.notify_to(target, notifiable, options)
                if notification is not None:
                    created += 1
                    yield notification

            logger.debug(
                f"Processed target batch {batch_number} ({len(batch)} targets, {created} notified)",
                extra={
                    "event": "delivery.batch.processed",
                    "batch": batch_number,
                    "targets": len(batch),
                    "notified": created,
                },
            )

    def notify_to(
        self, target: Any, notifiable: Any, options: Optional[Mapping[str, Any]] = None
    ) -> Optional[Notification]:
        """Store a notification for one target and trigger its email.

        Options ``send_email`` (default True) and ``send_later`` (default
        True) control email delivery.

        Returns:
            The notification, or None when the target is not subscribed to the key
        """
        options = dict(options or {})
        key = options.get("key") or notifiable.default_notification_key()

        with log_context(target=str(to_ref(target)), key=key):
            if not self.resolver.subscribed_to_base(target, key):
                logger.info(
                    f"Not notifying {to_ref(target)}: unsubscribed from '{key}'",
                    extra={"event": "delivery.unsubscribed"},
                )
                return None

            notification = self.store.store(target, notifiable, options)

            if options.get("send_email", True):
                self.send_notification_email(
                    notification,
                    target=target,
                    notifiable=notifiable,
                    send_later=options.get("send_later", True),
                )
        return notification

    # Email

    def send_notification_email(
        self,
        notification: Notification,
        target: Any = None,
        notifiable: Any = None,
        send_later: bool = True,
    ) -> Optional[EmailResult]:
        """Send the notification email if every email gate allows it.

        Email goes out only when email is enabled, the target accepts email
        for (notifiable, key), the target subscribes to email for the key and
        the notifiable allows email for (target, key).

        Returns:
            The send result for synchronous delivery, None when deferred or gated
        """
        target = self._resolve_entity(target, notification.target)
        notifiable = self._resolve_entity(notifiable, notification.notifiable)
        if target is None or notifiable is None:
            logger.warning(
                f"Skipping email for notification {notification.id}: target or notifiable missing",
                extra={"event": "delivery.email.skip", "reason": "entity_missing"},
            )
            return None

        key = notification.key
        if not self._email_allowed(
            lambda: target.notification_email_allowed(notifiable, key)
            and self.resolver.subscribed_to_email(target, key)
            and notifiable.notification_email_allowed(target, key),
            notification,
        ):
            return None

        if send_later:
            self.scheduler.schedule(0, self.deliver_email, notification.id)
            logger.debug(
                f"Scheduled email for notification {notification.id}",
                extra={"event": "delivery.email.scheduled", "notification_id": notification.id},
            )
            return None

        return self.email_sender.send(notification)

    def deliver_email(self, notification_id: int) -> Optional[EmailResult]:
        """Deferred email job. Returns None when the notification was deleted."""
        notification = self.store.reload(notification_id)
        if notification is None:
            logger.warning(
                f"Notification {notification_id} no longer exists; skipping email",
                extra={"event": "delivery.email.missing", "notification_id": notification_id},
            )
            return None
        return self.email_sender.send(notification)

    def send_batch_notification_email(
        self,
        target: Any,
        notifications: List[Notification],
        batch_key: Optional[str] = None,
        send_later: bool = True,
    ) -> Optional[EmailResult]:
        """Send one email covering several notifications of a target.

        The batch key defaults to the first notification's key and gates the
        email through the target's batch email setting and email subscription.
        """
        if not notifications:
            return None

        target = self._resolve_entity(target, notifications[0].target)
        if target is None:
            logger.warning(
                f"Skipping batch email for {notifications[0].target}: target not found",
                extra={"event": "delivery.batch_email.skip", "reason": "entity_missing"},
            )
            return None

        batch_key = batch_key or notifications[0].key
        if not self._email_allowed(
            lambda: target.batch_notification_email_allowed(batch_key)
            and self.resolver.subscribed_to_email(target, batch_key),
            None,
        ):
            return None

        if send_later:
            self.scheduler.schedule(
                0, self.deliver_batch_email, to_ref(target), [n.id for n in notifications], batch_key
            )
            return None

        return self.email_sender.send_batch(target, notifications, batch_key)

    def deliver_batch_email(
        self, target_ref: EntityRef, notification_ids: List[int], batch_key: Optional[str]
    ) -> Optional[EmailResult]:
        """Deferred batch email job; notifications deleted in the meantime are dropped."""
        target = self._load(target_ref)
        notifications = [n for n in (self.store.reload(i) for i in notification_ids) if n is not None]
        if target is None or not notifications:
            logger.warning(
                f"Skipping batch email for {target_ref}: nothing left to send",
                extra={"event": "delivery.batch_email.missing", "batch_key": batch_key},
            )
            return None
        return self.email_sender.send_batch(target, notifications, batch_key)

    def _email_allowed(self, gate: Callable[[], bool], notification: Optional[Notification]) -> bool:
        notification_id = notification.id if notification is not None else None
        if not self.settings.email_enabled:
            logger.debug(
                "Email disabled by configuration",
                extra={"event": "delivery.email.skip", "reason": "disabled", "notification_id": notification_id},
            )
            return False
        if self.email_sender is None:
            logger.warning(
                "Email enabled but no email sender configured",
                extra={"event": "delivery.email.skip", "reason": "no_sender", "notification_id": notification_id},
            )
            return False
        if not gate():
            logger.info(
                "Email not allowed for this target and key",
                extra={"event": "delivery.email.skip", "reason": "not_allowed", "notification_id": notification_id},
            )
            return False
        return True

    def _resolve_entity(self, entity: Any, ref: EntityRef) -> Any:
        """Return entity itself, loading references and falling back to ref for None."""
        if isinstance(entity, EntityRef):
            return self._load(entity)
        if entity is None:
            return self._load(ref)
        return entity

    def _load(self, ref: EntityRef) -> Any:
        return self.registry.load(ref)
