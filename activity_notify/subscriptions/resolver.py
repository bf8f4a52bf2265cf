"""Subscription gating.

Answers whether a target is subscribed to a notification key, to its email,
or to one optional channel, and records subscribe/unsubscribe actions.

A missing subscription record is not the same as an unsubscribed one: every
query takes a default that applies when the target never configured the key.
When the default is omitted the matching ``SubscriptionSettings`` value is
used.
"""

from datetime import datetime
from typing import Any, Callable, ContextManager, Dict, List, Optional

from sqlalchemy.orm import Session

from activity_notify.config.models import SubscriptionSettings
from activity_notify.domain.models import ChannelSubscription, Subscription
from activity_notify.domain.references import to_ref
from activity_notify.logging import get_logger
from activity_notify.persistence.database import get_session
from activity_notify.persistence.repositories import SubscriptionRepository
from activity_notify.utils.timestamps import utc_now

logger = get_logger(__name__, component="subscriptions")

SessionFactory = Callable[[], ContextManager[Session]]


class SubscriptionResolver:
    """Reads and mutates per-(target, key) subscriptions."""

    def __init__(
        self,
        settings: Optional[SubscriptionSettings] = None,
        session_factory: SessionFactory = get_session,
    ):
        """Initialize resolver.

        Args:
            settings: Defaults for unconfigured targets
            session_factory: Context manager factory yielding a database session
        """
        self.settings = settings or SubscriptionSettings()
        self.session_factory = session_factory

    # Queries

    def find_subscription(self, target: Any, key: str) -> Optional[Subscription]:
        with self.session_factory() as session:
            return SubscriptionRepository(session).find(to_ref(target), key)

    def subscriptions_of(self, target: Any) -> List[Subscription]:
        with self.session_factory() as session:
            return SubscriptionRepository(session).list_for_target(to_ref(target))

    def subscribed_to_base(self, target: Any, key: str, default: Optional[bool] = None) -> bool:
        """Whether the target receives notifications for key at all."""
        if default is None:
            default = self.settings.subscribe_as_default
        subscription = self.find_subscription(target, key)
        if subscription is None:
            return default
        return subscription.subscribing

    def subscribed_to_email(self, target: Any, key: str, default: Optional[bool] = None) -> bool:
        """Whether the target receives notification email for key."""
        if default is None:
            default = self.settings.subscribe_to_email_as_default
        subscription = self.find_subscription(target, key)
        if subscription is None:
            return default
        return subscription.subscribing_to_email

    def subscribed_to_channel(
        self, target: Any, key: str, channel: str, default: Optional[bool] = None
    ) -> bool:
        """Whether the target receives key through an optional channel.

        Requires both the base subscription and the channel flag; a target
        unsubscribed from the key is excluded from every channel.
        """
        if default is None:
            default = self.settings.subscribe_to_optional_targets_as_default
        subscription = self.find_subscription(target, key)
        if subscription is None:
            return default
        return subscription.subscribing and subscription.subscribing_to_channel(channel, default)

    # Mutations

    def find_or_create_subscription(
        self,
        target: Any,
        key: str,
        subscribing: Optional[bool] = None,
        subscribing_to_email: Optional[bool] = None,
        optional_targets: Optional[Dict[str, bool]] = None,
        at: Optional[datetime] = None,
    ) -> Subscription:
        """Return the subscription for (target, key), creating it if missing.

        A new record takes its flags from the arguments, falling back to the
        configured defaults. Unsubscribing from the base key without an
        explicit email flag also unsubscribes from email. Every flag gets its
        subscribed/unsubscribed timestamp.
        """
        with self.session_factory() as session:
            repo = SubscriptionRepository(session)
            ref = to_ref(target)
            existing = repo.find(ref, key)
            if existing is not None:
                return existing

            subscription = self._build_subscription(
                ref, key, subscribing, subscribing_to_email, optional_targets or {}, at or utc_now()
            )
            created = repo.create(subscription)

        logger.info(
            f"Created subscription for {created.target} and key '{key}'",
            extra={
                "event": "subscription.created",
                "target": str(created.target),
                "key": key,
                "subscribing": created.subscribing,
            },
        )
        return created

    def _build_subscription(self, ref, key, subscribing, subscribing_to_email, optional_targets, at):
        if subscribing is None:
            subscribing = self.settings.subscribe_as_default
        if subscribing_to_email is None:
            subscribing_to_email = False if not subscribing else self.settings.subscribe_to_email_as_default

        subscription = Subscription(
            target=ref,
            key=key,
            subscribing=subscribing,
            subscribing_to_email=subscribing_to_email,
            optional_targets={
                name: _channel_state(enabled, at) for name, enabled in optional_targets.items()
            },
            created_at=at,
            updated_at=at,
        )
        if subscribing:
            subscription.subscribed_at = at
        else:
            subscription.unsubscribed_at = at
        if subscribing_to_email:
            subscription.subscribed_to_email_at = at
        else:
            subscription.unsubscribed_to_email_at = at
        return subscription

    def subscribe(
        self,
        target: Any,
        key: str,
        with_email: bool = True,
        with_channels: bool = True,
        at: Optional[datetime] = None,
    ) -> Subscription:
        """Subscribe to key, plus email and every known channel by default.

        All flags flipped by one call share a single timestamp.
        """
        return self._set_all(target, key, True, with_email, with_channels, at)

    def unsubscribe(
        self,
        target: Any,
        key: str,
        with_email: bool = True,
        with_channels: bool = True,
        at: Optional[datetime] = None,
    ) -> Subscription:
        """Unsubscribe from key, plus email and every known channel by default."""
        return self._set_all(target, key, False, with_email, with_channels, at)

    def subscribe_to_email(self, target: Any, key: str, at: Optional[datetime] = None) -> Subscription:
        return self._mutate(target, key, at, lambda s, now: _set_email(s, True, now), "subscription.email.subscribed")

    def unsubscribe_to_email(self, target: Any, key: str, at: Optional[datetime] = None) -> Subscription:
        return self._mutate(target, key, at, lambda s, now: _set_email(s, False, now), "subscription.email.unsubscribed")

    def subscribe_to_channel(
        self, target: Any, key: str, channel: str, at: Optional[datetime] = None
    ) -> Subscription:
        return self._mutate(
            target, key, at, lambda s, now: _set_channel(s, channel, True, now), "subscription.channel.subscribed"
        )

    def unsubscribe_to_channel(
        self, target: Any, key: str, channel: str, at: Optional[datetime] = None
    ) -> Subscription:
        return self._mutate(
            target, key, at, lambda s, now: _set_channel(s, channel, False, now), "subscription.channel.unsubscribed"
        )

    def _set_all(self, target, key, enabled, with_email, with_channels, at):
        def apply(subscription: Subscription, now: datetime) -> None:
            _set_base(subscription, enabled, now)
            if with_email:
                _set_email(subscription, enabled, now)
            if with_channels:
                for name in list(subscription.optional_targets):
                    _set_channel(subscription, name, enabled, now)

        event = "subscription.subscribed" if enabled else "subscription.unsubscribed"
        return self._mutate(target, key, at, apply, event)

    def _mutate(self, target, key, at, apply, event: str) -> Subscription:
        now = at or utc_now()
        ref = to_ref(target)

        with self.session_factory() as session:
            repo = SubscriptionRepository(session)
            subscription = repo.find(ref, key)
            if subscription is None:
                subscription = self._build_subscription(ref, key, None, None, {}, now)
                apply(subscription, now)
                saved = repo.create(subscription)
            else:
                apply(subscription, now)
                subscription.updated_at = now
                saved = repo.save(subscription)

        logger.info(
            f"Updated subscription for {ref} and key '{key}'",
            extra={"event": event, "target": str(ref), "key": key},
        )
        return saved


def _channel_state(enabled: bool, at: datetime) -> ChannelSubscription:
    if enabled:
        return ChannelSubscription(enabled=True, subscribed_at=at)
    return ChannelSubscription(enabled=False, unsubscribed_at=at)


def _set_base(subscription: Subscription, enabled: bool, at: datetime) -> None:
    subscription.subscribing = enabled
    if enabled:
        subscription.subscribed_at = at
    else:
        subscription.unsubscribed_at = at


def _set_email(subscription: Subscription, enabled: bool, at: datetime) -> None:
    subscription.subscribing_to_email = enabled
    if enabled:
        subscription.subscribed_to_email_at = at
    else:
        subscription.unsubscribed_to_email_at = at


def _set_channel(subscription: Subscription, name: str, enabled: bool, at: datetime) -> None:
    current = subscription.optional_targets.get(name)
    state = current.model_copy() if current is not None else ChannelSubscription(enabled=enabled)
    state.enabled = enabled
    if enabled:
        state.subscribed_at = at
    else:
        state.unsubscribed_at = at
    subscription.optional_targets = {**subscription.optional_targets, name: state}
