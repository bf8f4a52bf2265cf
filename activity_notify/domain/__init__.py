"""Domain models, entity references and configurable values."""

from .models import ChannelSubscription, Notification, Subscription
from .references import (
    EntityRef,
    EntityRegistry,
    UnknownEntityKindError,
    to_optional_ref,
    to_ref,
)
from .values import Closure, ConfigValue, Literal, MethodRef, resolve_value

__all__ = [
    "Notification",
    "Subscription",
    "ChannelSubscription",
    "EntityRef",
    "EntityRegistry",
    "UnknownEntityKindError",
    "to_ref",
    "to_optional_ref",
    "ConfigValue",
    "Literal",
    "MethodRef",
    "Closure",
    "resolve_value",
]
