"""Notification store and bundling engine.

Notifications that share (target, notifiable kind, key, group) are bundled:
while the most recently created bundle owner is unopened, every new
notification for the same tuple becomes one of its members. Opening the owner
closes the bundle and the next notification starts a new one.

Member counts for an index page come from one grouped COUNT per opened state
instead of one query per displayed notification. Inside
``member_count_scope()`` the aggregate result is reused across calls.
"""

from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timedelta
from typing import Any, Callable, ContextManager, Dict, Iterable, Iterator, List, Mapping, Optional, Union

from sqlalchemy.orm import Session

from activity_notify.config.duration import to_seconds
from activity_notify.config.models import NotificationSettings
from activity_notify.domain.models import Notification
from activity_notify.domain.references import to_optional_ref, to_ref
from activity_notify.logging import get_logger
from activity_notify.logging.context import log_context
from activity_notify.persistence.database import get_session
from activity_notify.persistence.repositories import NotificationRepository
from activity_notify.utils.timestamps import utc_now

logger = get_logger(__name__, component="grouping")

SessionFactory = Callable[..., ContextManager[Session]]
NotificationOrId = Union[Notification, int]

# Options consumed by store(); any other option key is stored as a parameter
RESERVED_OPTIONS = frozenset(
    {"key", "group", "group_expiry_delay", "parameters", "notifier", "send_email", "send_later"}
)

_member_count_cache: ContextVar[Optional[Dict[tuple, Dict[int, int]]]] = ContextVar(
    "activity_notify_member_count_cache", default=None
)


def _id_of(notification: NotificationOrId) -> int:
    if isinstance(notification, Notification):
        if notification.id is None:
            raise ValueError("Notification has not been stored yet")
        return notification.id
    return int(notification)


class NotificationStore:
    """Creates notifications, elects bundle owners and answers index queries."""

    def __init__(
        self,
        settings: Optional[NotificationSettings] = None,
        session_factory: SessionFactory = get_session,
    ):
        """Initialize store.

        Args:
            settings: Notification settings (opened index limit)
            session_factory: Context manager factory yielding a database session;
                must accept ``write_lock`` like ``get_session``
        """
        self.settings = settings or NotificationSettings()
        self.session_factory = session_factory

    def store(self, target: Any, notifiable: Any, options: Optional[Mapping[str, Any]] = None) -> Notification:
        """Persist a notification for target about notifiable.

        Args:
            target: Recipient (a ``Target`` or an ``EntityRef``)
            notifiable: Subject (a ``Notifiable``)
            options: key, group, group_expiry_delay, notifier and parameters
                override the notifiable's settings; other keys outside
                ``RESERVED_OPTIONS`` are stored as parameters

        Returns:
            The stored notification, a bundle member when an unopened owner
            exists for its (target, notifiable kind, key, group)
        """
        options = dict(options or {})
        target_ref = to_ref(target)
        notifiable_ref = to_ref(notifiable)
        target_kind = target_ref.kind

        key = options.get("key") or notifiable.default_notification_key()
        group = options.get("group") or notifiable.notification_group(target_kind, key)
        notifier = options.get("notifier") or notifiable.notifier(target_kind, key)

        if options.get("group_expiry_delay") is not None:
            group_expiry_delay = to_seconds(options["group_expiry_delay"])
        else:
            group_expiry_delay = notifiable.group_expiry_delay(target_kind, key)

        parameters = dict(options.get("parameters") or {})
        parameters.update({k: v for k, v in options.items() if k not in RESERVED_OPTIONS})
        parameters.update(notifiable.notification_parameters(target_kind, key))

        group_ref = to_optional_ref(group)
        now = utc_now()

        with log_context(target=str(target_ref), key=key):
            # Election and insert run under the write lock so concurrent
            # stores for the same bundle cannot both create an owner
            with self.session_factory(write_lock=True) as session:
                repo = NotificationRepository(session)

                owner = None
                if group_ref is not None:
                    created_after = (
                        now - timedelta(seconds=group_expiry_delay) if group_expiry_delay is not None else None
                    )
                    owner = repo.find_open_owner(
                        target_ref, notifiable_ref.kind, key, group_ref, created_after=created_after
                    )

                notification = repo.add(
                    Notification(
                        target=target_ref,
                        notifiable=notifiable_ref,
                        key=key,
                        group=group_ref,
                        group_owner_id=owner.id if owner is not None else None,
                        notifier=to_optional_ref(notifier),
                        parameters=parameters,
                        created_at=now,
                        updated_at=now,
                    )
                )

            self._invalidate_member_counts()
            logger.info(
                f"Stored notification {notification.id} for {target_ref}",
                extra={
                    "event": "notification.stored",
                    "notification_id": notification.id,
                    "group_owner_id": notification.group_owner_id,
                    "bundled": notification.is_group_member,
                },
            )
        return notification

    def reload(self, notification: NotificationOrId) -> Optional[Notification]:
        """Fetch the current state of a notification, or None if it was deleted."""
        with self.session_factory() as session:
            return NotificationRepository(session).get(_id_of(notification))

    def delete(self, notification: NotificationOrId) -> bool:
        with self.session_factory() as session:
            deleted = NotificationRepository(session).delete(_id_of(notification))
        self._invalidate_member_counts()
        return deleted

    # Opening

    def open(
        self,
        notification: NotificationOrId,
        at: Optional[datetime] = None,
        include_members: bool = True,
    ) -> int:
        """Mark a notification opened.

        Re-opening keeps the original opened_at. When include_members is set
        and the notification is a bundle owner, its unopened members are
        opened by one UPDATE in the same transaction.

        Returns:
            Rows affected (the notification itself plus opened members)
        """
        notification_id = _id_of(notification)
        at = at or utc_now()

        with self.session_factory() as session:
            repo = NotificationRepository(session)
            current = repo.get(notification_id)
            if current is None:
                logger.warning(
                    f"Cannot open notification {notification_id}: not found",
                    extra={"event": "notification.open.missing", "notification_id": notification_id},
                )
                return 0

            affected = repo.mark_opened(notification_id, at)
            if include_members and current.is_group_owner:
                affected += repo.open_members(notification_id, at)

        self._invalidate_member_counts()
        logger.debug(
            f"Opened notification {notification_id} ({affected} rows)",
            extra={"event": "notification.opened", "notification_id": notification_id, "rows": affected},
        )
        return affected

    def open_all_of(
        self,
        target: Any,
        opened_at: Optional[datetime] = None,
        filtered_by_key: Optional[str] = None,
        filtered_by_type: Optional[str] = None,
        filtered_by_group: Any = None,
    ) -> int:
        """Open every unopened notification of a target.

        Args:
            target: Recipient whose notifications are opened
            opened_at: Timestamp to record (defaults to now)
            filtered_by_key: Only open notifications with this key
            filtered_by_type: Only open notifications about this notifiable kind
            filtered_by_group: Only open notifications in this group

        Returns:
            Number of notifications opened
        """
        with self.session_factory() as session:
            affected = NotificationRepository(session).open_all(
                to_ref(target),
                opened_at or utc_now(),
                key=filtered_by_key,
                notifiable_kind=filtered_by_type,
                group=to_optional_ref(filtered_by_group),
            )
        self._invalidate_member_counts()
        return affected

    # Index queries

    def unopened_index(self, target: Any, limit: Optional[int] = None) -> List[Notification]:
        """Unopened bundle owners, latest first."""
        with self.session_factory() as session:
            return NotificationRepository(session).unopened_owners(to_ref(target), limit)

    def opened_index(self, target: Any, limit: Optional[int] = None) -> List[Notification]:
        """Latest opened bundle owners (``opened_index_limit`` by default)."""
        limit = limit or self.settings.opened_index_limit
        with self.session_factory() as session:
            return NotificationRepository(session).opened_owners(to_ref(target), limit)

    def notification_index(self, target: Any, limit: Optional[int] = None) -> List[Notification]:
        """Unopened owners first, topped up with opened owners.

        Without a limit every unopened owner is returned followed by the
        opened index.
        """
        unopened = self.unopened_index(target, limit)
        if limit is None:
            return unopened + self.opened_index(target)

        remaining = limit - len(unopened)
        if remaining <= 0:
            return unopened
        return unopened + self.opened_index(target, remaining)

    def unopened_count(self, target: Any) -> int:
        """Number of unopened bundle owners of a target."""
        with self.session_factory() as session:
            return NotificationRepository(session).count_unopened_owners(to_ref(target))

    # Bundles

    @contextmanager
    def member_count_scope(self) -> Iterator[None]:
        """Reuse member-count aggregates for every call inside the block.

        Example:
            >>> with store.member_count_scope():
            ...     for notification in store.notification_index(user):
            ...         render(notification, store.member_count(notification))
        """
        token = _member_count_cache.set({})
        try:
            yield
        finally:
            _member_count_cache.reset(token)

    def member_counts(
        self, target: Any, opened: bool, limit: Optional[int] = None, distinct_notifiers: bool = False
    ) -> Dict[int, int]:
        """Member counts keyed by owner id for a target's index window.

        For unopened owners the window is every unopened owner; for opened
        owners it is the latest ``limit`` opened owners. Members are counted
        only when their opened state matches their owner's.
        """
        target_ref = to_ref(target)
        limit = limit or self.settings.opened_index_limit
        cache_key = (target_ref, opened, limit if opened else None, distinct_notifiers)

        cache = _member_count_cache.get()
        if cache is not None and cache_key in cache:
            return cache[cache_key]

        with self.session_factory() as session:
            repo = NotificationRepository(session)
            if distinct_notifiers:
                counts = (
                    repo.opened_member_notifier_counts(target_ref, limit)
                    if opened
                    else repo.unopened_member_notifier_counts(target_ref)
                )
            else:
                counts = (
                    repo.opened_member_counts(target_ref, limit)
                    if opened
                    else repo.unopened_member_counts(target_ref)
                )

        if cache is not None:
            cache[cache_key] = counts
        return counts

    def member_count(self, notification: Notification, limit: Optional[int] = None) -> int:
        """Number of members in the notification's bundle.

        Members resolve to their owner first. Returns 0 when the owner no
        longer exists.
        """
        owner = self._owner_of(notification)
        if owner is None:
            return 0
        return self.member_counts(owner.target, owner.is_opened, limit).get(owner.id, 0)

    def group_notification_count(self, notification: Notification, limit: Optional[int] = None) -> int:
        """Members plus the owner itself."""
        return self.member_count(notification, limit) + 1

    def group_member_notifier_count(self, notification: Notification, limit: Optional[int] = None) -> int:
        """Distinct notifiers among the members, excluding the owner's notifier."""
        owner = self._owner_of(notification)
        if owner is None:
            return 0
        counts = self.member_counts(owner.target, owner.is_opened, limit, distinct_notifiers=True)
        return counts.get(owner.id, 0)

    def group_notifier_count(self, notification: Notification, limit: Optional[int] = None) -> int:
        """Distinct notifiers of the whole bundle; 0 when the owner has no notifier."""
        owner = self._owner_of(notification)
        if owner is None or owner.notifier is None:
            return 0
        return self.group_member_notifier_count(owner, limit) + 1

    def group_member_exists(self, notifications: Iterable[Notification]) -> bool:
        """Whether any of the notifications owns members, checked with one query."""
        owner_ids = [n.id for n in notifications if n.id is not None]
        if not owner_ids:
            return False
        with self.session_factory() as session:
            return NotificationRepository(session).any_members(owner_ids)

    def latest_group_member(self, notification: Notification) -> Optional[Notification]:
        """Most recent member of the bundle, or the owner when it has none."""
        owner = self._owner_of(notification)
        if owner is None:
            return None
        with self.session_factory() as session:
            latest = NotificationRepository(session).latest_member(owner.id)
        return latest or owner

    def remove_from_group(self, notification: Notification) -> Optional[Notification]:
        """Hand the bundle over to its earliest member.

        Used before deleting an owner. The earliest member becomes the new
        owner and the remaining members move to it.

        Returns:
            The new owner, or None if the bundle had no members
        """
        owner_id = _id_of(notification)
        with self.session_factory() as session:
            repo = NotificationRepository(session)
            new_owner = repo.earliest_member(owner_id)
            if new_owner is None:
                return None
            moved = repo.promote_member(owner_id, new_owner.id)
            promoted = repo.get_required(new_owner.id)

        self._invalidate_member_counts()
        logger.info(
            f"Promoted notification {new_owner.id} to bundle owner",
            extra={
                "event": "notification.group.promoted",
                "previous_owner_id": owner_id,
                "notification_id": new_owner.id,
                "members_moved": moved,
            },
        )
        return promoted

    def _owner_of(self, notification: Notification) -> Optional[Notification]:
        if notification.is_group_owner:
            return notification
        with self.session_factory() as session:
            return NotificationRepository(session).get(notification.group_owner_id)

    @staticmethod
    def _invalidate_member_counts() -> None:
        cache = _member_count_cache.get()
        if cache is not None:
            cache.clear()
