"""Data access layer (repositories) for persistence operations.

This module provides repository classes for notification and subscription
records. Repositories encapsulate database operations and return domain
models rather than ORM models.
"""

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy import and_, delete, distinct, exists, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, aliased

from activity_notify.domain.models import Notification, Subscription
from activity_notify.domain.references import EntityRef
from activity_notify.utils.timestamps import format_timestamp

from .exceptions import DataIntegrityError, PersistenceError, RecordNotFoundError
from .schema import NotificationModel, SubscriptionModel

logger = logging.getLogger(__name__)

_N = NotificationModel


def _for_target(target: EntityRef):
    return and_(_N.target_kind == target.kind, _N.target_id == target.id)


def _for_group(group: Optional[EntityRef]):
    if group is None:
        return and_(_N.group_kind.is_(None), _N.group_id.is_(None))
    return and_(_N.group_kind == group.kind, _N.group_id == group.id)


_LATEST_FIRST = (_N.created_at.desc(), _N.id.desc())
_EARLIEST_FIRST = (_N.created_at.asc(), _N.id.asc())


class NotificationRepository:
    """Repository for notification records and bundle queries."""

    def __init__(self, session: Session):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy session for database operations
        """
        self.session = session

    def get(self, notification_id: int) -> Optional[Notification]:
        """Retrieve a notification by id.

        Returns:
            Notification domain model if found, None otherwise

        Raises:
            PersistenceError: If database error occurs
        """
        try:
            model = self.session.get(NotificationModel, notification_id)
            return model.to_domain() if model is not None else None

        except SQLAlchemyError as e:
            logger.error(f"Error retrieving notification {notification_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve notification: {e}") from e

    def get_required(self, notification_id: int) -> Notification:
        """Retrieve a notification by id, raising when it does not exist.

        Raises:
            RecordNotFoundError: If no notification has this id
            PersistenceError: If database error occurs
        """
        notification = self.get(notification_id)
        if notification is None:
            raise RecordNotFoundError(f"Notification with id {notification_id} not found")
        return notification

    def add(self, notification: Notification) -> Notification:
        """Insert a new notification.

        Args:
            notification: Domain model with created_at set and id unset

        Returns:
            Persisted Notification with its assigned id

        Raises:
            DataIntegrityError: If a constraint is violated
            PersistenceError: If database error occurs
        """
        try:
            model = NotificationModel.from_domain(notification)
            self.session.add(model)
            self.session.flush()
            return model.to_domain()

        except IntegrityError as e:
            logger.error(f"Integrity error inserting notification: {e}", exc_info=True)
            raise DataIntegrityError(f"Failed to insert notification due to constraint violation: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Error inserting notification: {e}", exc_info=True)
            raise PersistenceError(f"Failed to insert notification: {e}") from e

    def delete(self, notification_id: int) -> bool:
        """Delete a notification. Returns True when a row was removed."""
        try:
            result = self.session.execute(delete(_N).where(_N.id == notification_id))
            self.session.flush()
            return result.rowcount > 0

        except SQLAlchemyError as e:
            logger.error(f"Error deleting notification {notification_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to delete notification: {e}") from e

    def find_open_owner(
        self,
        target: EntityRef,
        notifiable_kind: str,
        key: str,
        group: EntityRef,
        created_after: Optional[datetime] = None,
    ) -> Optional[Notification]:
        """Find the most recently created unopened bundle owner.

        The row is selected FOR UPDATE. Run it in a session opened with
        ``get_session(write_lock=True)`` so SQLite holds the write lock from
        the election until the insert commits.

        Args:
            target: Recipient of the bundle
            notifiable_kind: Kind of the notifiable
            key: Notification key
            group: Bundling group
            created_after: Only consider owners created after this instant

        Returns:
            The owner if one exists, None otherwise

        Raises:
            PersistenceError: If database error occurs
        """
        try:
            stmt = select(_N).where(
                _for_target(target),
                _N.notifiable_kind == notifiable_kind,
                _N.key == key,
                _for_group(group),
                _N.group_owner_id.is_(None),
                _N.opened_at.is_(None),
            )
            if created_after is not None:
                stmt = stmt.where(_N.created_at > format_timestamp(created_after))

            stmt = stmt.order_by(*_LATEST_FIRST).limit(1).with_for_update()
            model = self.session.execute(stmt).scalar_one_or_none()
            return model.to_domain() if model is not None else None

        except SQLAlchemyError as e:
            logger.error(f"Error finding bundle owner for {target}/{key}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to find bundle owner: {e}") from e

    def mark_opened(self, notification_id: int, opened_at: datetime) -> int:
        """Set opened_at on one notification if it is still unopened.

        Returns:
            Number of rows updated (0 or 1)
        """
        return self._open_where(_N.id == notification_id, opened_at=opened_at)

    def open_members(self, owner_id: int, opened_at: datetime) -> int:
        """Open every unopened member of a bundle in a single UPDATE.

        Returns:
            Number of member rows updated
        """
        return self._open_where(_N.group_owner_id == owner_id, opened_at=opened_at)

    def open_all(
        self,
        target: EntityRef,
        opened_at: datetime,
        key: Optional[str] = None,
        notifiable_kind: Optional[str] = None,
        group: Optional[EntityRef] = None,
    ) -> int:
        """Open every unopened notification of a target, optionally filtered.

        Returns:
            Number of rows updated
        """
        conditions = [_for_target(target)]
        if key is not None:
            conditions.append(_N.key == key)
        if notifiable_kind is not None:
            conditions.append(_N.notifiable_kind == notifiable_kind)
        if group is not None:
            conditions.append(_for_group(group))
        return self._open_where(and_(*conditions), opened_at=opened_at)

    def _open_where(self, condition, opened_at: datetime) -> int:
        try:
            stamp = format_timestamp(opened_at)
            stmt = (
                update(_N)
                .where(condition, _N.opened_at.is_(None))
                .values(opened_at=stamp, updated_at=stamp)
                .execution_options(synchronize_session=False)
            )
            result = self.session.execute(stmt)
            self.session.flush()
            return result.rowcount

        except SQLAlchemyError as e:
            logger.error(f"Error opening notifications: {e}", exc_info=True)
            raise PersistenceError(f"Failed to open notifications: {e}") from e

    def unopened_owners(self, target: EntityRef, limit: Optional[int] = None) -> List[Notification]:
        """Unopened bundle owners of a target, latest first."""
        stmt = select(_N).where(
            _for_target(target), _N.group_owner_id.is_(None), _N.opened_at.is_(None)
        ).order_by(*_LATEST_FIRST)
        if limit is not None:
            stmt = stmt.limit(limit)
        return self._fetch(stmt, f"unopened notifications of {target}")

    def opened_owners(self, target: EntityRef, limit: int) -> List[Notification]:
        """The latest ``limit`` opened bundle owners of a target."""
        stmt = select(_N).where(
            _for_target(target), _N.group_owner_id.is_(None), _N.opened_at.is_not(None)
        ).order_by(*_LATEST_FIRST).limit(limit)
        return self._fetch(stmt, f"opened notifications of {target}")

    def count_unopened_owners(self, target: EntityRef) -> int:
        try:
            stmt = select(func.count()).select_from(_N).where(
                _for_target(target), _N.group_owner_id.is_(None), _N.opened_at.is_(None)
            )
            return self.session.execute(stmt).scalar_one()

        except SQLAlchemyError as e:
            logger.error(f"Error counting unopened notifications of {target}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to count notifications: {e}") from e

    def unopened_member_counts(self, target: EntityRef) -> Dict[int, int]:
        """Member counts for every unopened owner of a target.

        One aggregate query grouped by owner id; only unopened members are
        counted.

        Returns:
            Mapping of owner id to member count (owners without members are absent)
        """
        owners = select(_N.id).where(
            _for_target(target), _N.group_owner_id.is_(None), _N.opened_at.is_(None)
        )
        return self._member_counts(owners, opened=False)

    def opened_member_counts(self, target: EntityRef, limit: int) -> Dict[int, int]:
        """Member counts for the latest ``limit`` opened owners of a target.

        Only opened members are counted.
        """
        owners = (
            select(_N.id)
            .where(_for_target(target), _N.group_owner_id.is_(None), _N.opened_at.is_not(None))
            .order_by(*_LATEST_FIRST)
            .limit(limit)
            .subquery()
        )
        return self._member_counts(select(owners.c.id), opened=True)

    def unopened_member_notifier_counts(self, target: EntityRef) -> Dict[int, int]:
        """Distinct member notifiers (other than the owner's) per unopened owner."""
        owners = select(_N.id).where(
            _for_target(target), _N.group_owner_id.is_(None), _N.opened_at.is_(None)
        )
        return self._member_counts(owners, opened=False, distinct_notifiers=True)

    def opened_member_notifier_counts(self, target: EntityRef, limit: int) -> Dict[int, int]:
        """Distinct member notifiers per owner for the latest ``limit`` opened owners."""
        owners = (
            select(_N.id)
            .where(_for_target(target), _N.group_owner_id.is_(None), _N.opened_at.is_not(None))
            .order_by(*_LATEST_FIRST)
            .limit(limit)
            .subquery()
        )
        return self._member_counts(select(owners.c.id), opened=True, distinct_notifiers=True)

    def _member_counts(self, owner_ids, opened: bool, distinct_notifiers: bool = False) -> Dict[int, int]:
        try:
            opened_state = _N.opened_at.is_not(None) if opened else _N.opened_at.is_(None)
            if distinct_notifiers:
                owner = aliased(NotificationModel)
                stmt = (
                    select(_N.group_owner_id, func.count(distinct(_N.notifier_id)))
                    .join(owner, owner.id == _N.group_owner_id)
                    .where(
                        _N.group_owner_id.in_(owner_ids),
                        opened_state,
                        owner.notifier_kind == _N.notifier_kind,
                        owner.notifier_id != _N.notifier_id,
                    )
                )
            else:
                stmt = select(_N.group_owner_id, func.count(_N.id)).where(
                    _N.group_owner_id.in_(owner_ids), opened_state
                )
            stmt = stmt.group_by(_N.group_owner_id)
            return {owner_id: count for owner_id, count in self.session.execute(stmt)}

        except SQLAlchemyError as e:
            logger.error(f"Error computing bundle member counts: {e}", exc_info=True)
            raise PersistenceError(f"Failed to compute member counts: {e}") from e

    def any_members(self, owner_ids: Iterable[int]) -> bool:
        """Check with one EXISTS query whether any of the owners has members."""
        owner_ids = list(owner_ids)
        if not owner_ids:
            return False
        try:
            stmt = select(exists().where(_N.group_owner_id.in_(owner_ids)))
            return bool(self.session.execute(stmt).scalar())

        except SQLAlchemyError as e:
            logger.error(f"Error checking bundle members: {e}", exc_info=True)
            raise PersistenceError(f"Failed to check bundle members: {e}") from e

    def latest_member(self, owner_id: int) -> Optional[Notification]:
        stmt = select(_N).where(_N.group_owner_id == owner_id).order_by(*_LATEST_FIRST).limit(1)
        members = self._fetch(stmt, f"latest member of {owner_id}")
        return members[0] if members else None

    def earliest_member(self, owner_id: int) -> Optional[Notification]:
        stmt = select(_N).where(_N.group_owner_id == owner_id).order_by(*_EARLIEST_FIRST).limit(1)
        members = self._fetch(stmt, f"earliest member of {owner_id}")
        return members[0] if members else None

    def promote_member(self, owner_id: int, new_owner_id: int) -> int:
        """Make new_owner_id a bundle owner and move the remaining members to it.

        Returns:
            Number of members moved to the new owner
        """
        try:
            self.session.execute(
                update(_N)
                .where(_N.id == new_owner_id)
                .values(group_owner_id=None)
            )
            result = self.session.execute(
                update(_N)
                .where(_N.group_owner_id == owner_id)
                .values(group_owner_id=new_owner_id)
            )
            self.session.flush()
            return result.rowcount

        except SQLAlchemyError as e:
            logger.error(f"Error promoting {new_owner_id} to bundle owner: {e}", exc_info=True)
            raise PersistenceError(f"Failed to promote bundle member: {e}") from e

    def _fetch(self, stmt, description: str) -> List[Notification]:
        try:
            models = self.session.execute(stmt).scalars().all()
            return [model.to_domain() for model in models]

        except SQLAlchemyError as e:
            logger.error(f"Error retrieving {description}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve notifications: {e}") from e


class SubscriptionRepository:
    """Repository for subscription records."""

    def __init__(self, session: Session):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy session for database operations
        """
        self.session = session

    def find(self, target: EntityRef, key: str) -> Optional[Subscription]:
        """Retrieve the subscription of a target for a key.

        Returns:
            Subscription domain model if found, None otherwise

        Raises:
            PersistenceError: If database error occurs
        """
        try:
            model = self._find_model(target, key)
            return model.to_domain() if model is not None else None

        except SQLAlchemyError as e:
            logger.error(f"Error retrieving subscription {target}/{key}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve subscription: {e}") from e

    def list_for_target(self, target: EntityRef) -> List[Subscription]:
        """All subscriptions of a target ordered by key."""
        try:
            stmt = (
                select(SubscriptionModel)
                .where(
                    SubscriptionModel.target_kind == target.kind,
                    SubscriptionModel.target_id == target.id,
                )
                .order_by(SubscriptionModel.key.asc())
            )
            return [model.to_domain() for model in self.session.execute(stmt).scalars().all()]

        except SQLAlchemyError as e:
            logger.error(f"Error retrieving subscriptions of {target}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve subscriptions: {e}") from e

    def create(self, subscription: Subscription) -> Subscription:
        """Insert a new subscription.

        Raises:
            DataIntegrityError: If the target already has a subscription for the key
            PersistenceError: If database error occurs
        """
        try:
            model = SubscriptionModel.from_domain(subscription)
            self.session.add(model)
            self.session.flush()
            return model.to_domain()

        except IntegrityError as e:
            logger.error(
                f"Integrity error creating subscription {subscription.target}/{subscription.key}: {e}",
                exc_info=True,
            )
            raise DataIntegrityError(f"Failed to create subscription due to constraint violation: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Error creating subscription: {e}", exc_info=True)
            raise PersistenceError(f"Failed to create subscription: {e}") from e

    def save(self, subscription: Subscription) -> Subscription:
        """Update an existing subscription in place.

        Raises:
            RecordNotFoundError: If the subscription does not exist
            PersistenceError: If database error occurs
        """
        try:
            model = self._find_model(subscription.target, subscription.key)
            if model is None:
                raise RecordNotFoundError(
                    f"Subscription for {subscription.target} and key '{subscription.key}' not found"
                )

            model.apply(subscription)
            self.session.flush()
            return model.to_domain()

        except RecordNotFoundError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"Error updating subscription: {e}", exc_info=True)
            raise PersistenceError(f"Failed to update subscription: {e}") from e

    def _find_model(self, target: EntityRef, key: str) -> Optional[SubscriptionModel]:
        stmt = select(SubscriptionModel).where(
            SubscriptionModel.target_kind == target.kind,
            SubscriptionModel.target_id == target.id,
            SubscriptionModel.key == key,
        )
        return self.session.execute(stmt).scalar_one_or_none()
