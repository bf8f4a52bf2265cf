"""Core domain models for notifications and subscriptions.

This module defines the data structures used throughout the package:
- Notification: a persisted notification for one target about one notifiable
- ChannelSubscription: opt-in state for one optional channel
- Subscription: a target's per-key opt-in record
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator

from activity_notify.utils.timestamps import ensure_utc

from .references import EntityRef


class Notification(BaseModel):
    """A notification delivered to one target.

    ``group_owner_id is None`` marks a bundle owner; a notification with
    ``group_owner_id`` set is a member of that owner's bundle and never owns
    members itself.
    """

    id: Optional[int] = Field(None, description="Storage id (None until persisted)")
    target: EntityRef = Field(..., description="Recipient of the notification")
    notifiable: EntityRef = Field(..., description="Subject the notification is about")
    key: str = Field(..., min_length=1, description="Dotted notification key, e.g. 'comment.created'")
    group: Optional[EntityRef] = Field(None, description="Bundling group")
    group_owner_id: Optional[int] = Field(None, description="Id of the owning notification for members")
    notifier: Optional[EntityRef] = Field(None, description="Entity credited as the actor")
    parameters: Dict[str, Any] = Field(default_factory=dict, description="Arbitrary rendering parameters")
    opened_at: Optional[datetime] = Field(None, description="When the notification was opened (UTC)")
    created_at: Optional[datetime] = Field(None, description="When the notification was created (UTC)")
    updated_at: Optional[datetime] = Field(None, description="Last modification time (UTC)")

    @field_validator("opened_at", "created_at", "updated_at")
    @classmethod
    def ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Ensure datetime is timezone-aware and in UTC."""
        return ensure_utc(v)

    @property
    def is_opened(self) -> bool:
        return self.opened_at is not None

    @property
    def is_unopened(self) -> bool:
        return self.opened_at is None

    @property
    def is_group_owner(self) -> bool:
        return self.group_owner_id is None

    @property
    def is_group_member(self) -> bool:
        return self.group_owner_id is not None

    def __str__(self) -> str:
        return f"Notification({self.id}, {self.key} -> {self.target})"


class ChannelSubscription(BaseModel):
    """Subscription state for a single optional channel."""

    enabled: bool = Field(..., description="Whether the channel is subscribed")
    subscribed_at: Optional[datetime] = None
    unsubscribed_at: Optional[datetime] = None

    @field_validator("subscribed_at", "unsubscribed_at")
    @classmethod
    def ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Ensure datetime is timezone-aware and in UTC."""
        return ensure_utc(v)


class Subscription(BaseModel):
    """A target's subscription record for one notification key.

    The absence of a record is meaningful: resolvers fall back to a
    configurable default instead of treating it as unsubscribed.
    """

    id: Optional[int] = Field(None, description="Storage id (None until persisted)")
    target: EntityRef
    key: str = Field(..., min_length=1)
    subscribing: bool = True
    subscribed_at: Optional[datetime] = None
    unsubscribed_at: Optional[datetime] = None
    subscribing_to_email: bool = True
    subscribed_to_email_at: Optional[datetime] = None
    unsubscribed_to_email_at: Optional[datetime] = None
    optional_targets: Dict[str, ChannelSubscription] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator(
        "subscribed_at",
        "unsubscribed_at",
        "subscribed_to_email_at",
        "unsubscribed_to_email_at",
        "created_at",
        "updated_at",
    )
    @classmethod
    def ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Ensure datetime is timezone-aware and in UTC."""
        return ensure_utc(v)

    def subscribing_to_channel(self, name: str, default: bool = True) -> bool:
        """Return the channel flag, or default when the channel was never configured."""
        channel = self.optional_targets.get(name)
        if channel is None:
            return default
        return channel.enabled
