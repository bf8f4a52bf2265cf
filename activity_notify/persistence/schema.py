"""Database schema definition and ORM models.

This module defines SQLAlchemy ORM models for the notifications and
subscriptions tables and provides conversion methods between ORM models and
domain models.
"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Index,
    Integer,
    String,
    UniqueConstraint,
    inspect,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base

from activity_notify.domain.models import ChannelSubscription, Notification, Subscription
from activity_notify.domain.references import EntityRef
from activity_notify.utils.timestamps import format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)

Base = declarative_base()


class NotificationModel(Base):
    """ORM model for notifications table.

    Polymorphic references are stored as ``<name>_kind``/``<name>_id`` column
    pairs. ``group_owner_id`` is a plain integer column, not a foreign key:
    deleting an owner leaves its members in place.
    """

    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)

    target_kind = Column(String(100), nullable=False)
    target_id = Column(String(255), nullable=False)
    notifiable_kind = Column(String(100), nullable=False)
    notifiable_id = Column(String(255), nullable=False)
    key = Column(String(255), nullable=False)
    group_kind = Column(String(100), nullable=True)
    group_id = Column(String(255), nullable=True)
    group_owner_id = Column(Integer, nullable=True)
    notifier_kind = Column(String(100), nullable=True)
    notifier_id = Column(String(255), nullable=True)

    parameters = Column(JSON, nullable=False, default=dict)

    # Timestamps (stored as ISO 8601 strings)
    opened_at = Column(String(50), nullable=True)
    created_at = Column(String(50), nullable=False)
    updated_at = Column(String(50), nullable=False)

    __table_args__ = (
        Index("idx_notifications_target", "target_kind", "target_id", "created_at"),
        Index(
            "idx_notifications_bundle",
            "target_kind",
            "target_id",
            "notifiable_kind",
            "key",
            "group_kind",
            "group_id",
        ),
        Index("idx_notifications_group_owner", "group_owner_id"),
    )

    def to_domain(self) -> Notification:
        """Convert ORM model to domain model.

        Returns:
            Notification: Domain model instance
        """
        return Notification(
            id=self.id,
            target=EntityRef(kind=self.target_kind, id=self.target_id),
            notifiable=EntityRef(kind=self.notifiable_kind, id=self.notifiable_id),
            key=self.key,
            group=_ref_or_none(self.group_kind, self.group_id),
            group_owner_id=self.group_owner_id,
            notifier=_ref_or_none(self.notifier_kind, self.notifier_id),
            parameters=dict(self.parameters or {}),
            opened_at=parse_timestamp(self.opened_at),
            created_at=parse_timestamp(self.created_at),
            updated_at=parse_timestamp(self.updated_at),
        )

    @classmethod
    def from_domain(cls, notification: Notification) -> "NotificationModel":
        """Create ORM model from domain model.

        Args:
            notification: Domain model instance (created_at must be set)

        Returns:
            NotificationModel: ORM model instance
        """
        return cls(
            id=notification.id,
            target_kind=notification.target.kind,
            target_id=notification.target.id,
            notifiable_kind=notification.notifiable.kind,
            notifiable_id=notification.notifiable.id,
            key=notification.key,
            group_kind=notification.group.kind if notification.group else None,
            group_id=notification.group.id if notification.group else None,
            group_owner_id=notification.group_owner_id,
            notifier_kind=notification.notifier.kind if notification.notifier else None,
            notifier_id=notification.notifier.id if notification.notifier else None,
            parameters=dict(notification.parameters),
            opened_at=format_timestamp(notification.opened_at),
            created_at=format_timestamp(notification.created_at),
            updated_at=format_timestamp(notification.updated_at or notification.created_at),
        )


class SubscriptionModel(Base):
    """ORM model for subscriptions table.

    One row per (target, key). ``optional_targets`` maps channel names to
    ``{"enabled", "subscribed_at", "unsubscribed_at"}`` with ISO 8601 strings.
    """

    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, autoincrement=True)

    target_kind = Column(String(100), nullable=False)
    target_id = Column(String(255), nullable=False)
    key = Column(String(255), nullable=False)

    subscribing = Column(Boolean, nullable=False, default=True)
    subscribed_at = Column(String(50), nullable=True)
    unsubscribed_at = Column(String(50), nullable=True)
    subscribing_to_email = Column(Boolean, nullable=False, default=True)
    subscribed_to_email_at = Column(String(50), nullable=True)
    unsubscribed_to_email_at = Column(String(50), nullable=True)
    optional_targets = Column(JSON, nullable=False, default=dict)

    created_at = Column(String(50), nullable=False)
    updated_at = Column(String(50), nullable=False)

    __table_args__ = (
        UniqueConstraint("target_kind", "target_id", "key", name="uq_subscriptions_target_key"),
        Index("idx_subscriptions_target", "target_kind", "target_id"),
    )

    def to_domain(self) -> Subscription:
        """Convert ORM model to domain model.

        Returns:
            Subscription: Domain model instance
        """
        return Subscription(
            id=self.id,
            target=EntityRef(kind=self.target_kind, id=self.target_id),
            key=self.key,
            subscribing=self.subscribing,
            subscribed_at=parse_timestamp(self.subscribed_at),
            unsubscribed_at=parse_timestamp(self.unsubscribed_at),
            subscribing_to_email=self.subscribing_to_email,
            subscribed_to_email_at=parse_timestamp(self.subscribed_to_email_at),
            unsubscribed_to_email_at=parse_timestamp(self.unsubscribed_to_email_at),
            optional_targets={
                name: ChannelSubscription(
                    enabled=bool(state.get("enabled")),
                    subscribed_at=parse_timestamp(state.get("subscribed_at")),
                    unsubscribed_at=parse_timestamp(state.get("unsubscribed_at")),
                )
                for name, state in (self.optional_targets or {}).items()
            },
            created_at=parse_timestamp(self.created_at),
            updated_at=parse_timestamp(self.updated_at),
        )

    @classmethod
    def from_domain(cls, subscription: Subscription) -> "SubscriptionModel":
        """Create ORM model from domain model.

        Args:
            subscription: Domain model instance (created_at must be set)

        Returns:
            SubscriptionModel: ORM model instance
        """
        model = cls(
            id=subscription.id,
            target_kind=subscription.target.kind,
            target_id=subscription.target.id,
            key=subscription.key,
            created_at=format_timestamp(subscription.created_at),
        )
        model.apply(subscription)
        return model

    def apply(self, subscription: Subscription) -> None:
        """Copy the mutable flags and timestamps from a domain model."""
        self.subscribing = subscription.subscribing
        self.subscribed_at = format_timestamp(subscription.subscribed_at)
        self.unsubscribed_at = format_timestamp(subscription.unsubscribed_at)
        self.subscribing_to_email = subscription.subscribing_to_email
        self.subscribed_to_email_at = format_timestamp(subscription.subscribed_to_email_at)
        self.unsubscribed_to_email_at = format_timestamp(subscription.unsubscribed_to_email_at)
        # Assign a new dict so the JSON column is flagged dirty
        self.optional_targets = _serialize_channels(subscription.optional_targets)
        self.updated_at = format_timestamp(subscription.updated_at or subscription.created_at)


def _ref_or_none(kind: Optional[str], id_: Optional[str]) -> Optional[EntityRef]:
    if kind is None or id_ is None:
        return None
    return EntityRef(kind=kind, id=id_)


def _serialize_channels(channels: Dict[str, ChannelSubscription]) -> Dict[str, Dict[str, Any]]:
    return {
        name: {
            "enabled": state.enabled,
            "subscribed_at": format_timestamp(state.subscribed_at),
            "unsubscribed_at": format_timestamp(state.unsubscribed_at),
        }
        for name, state in channels.items()
    }


def create_schema(engine: Engine) -> None:
    """Create all tables and indexes if they don't exist (idempotent).

    Args:
        engine: SQLAlchemy engine instance
    """
    logger.info("Creating database schema if not exists")

    try:
        Base.metadata.create_all(engine, checkfirst=True)

        tables = inspect(engine).get_table_names()
        logger.info(f"Database schema ready. Tables: {', '.join(tables)}")

    except Exception as e:
        logger.error(f"Failed to create database schema: {e}", exc_info=True)
        raise
