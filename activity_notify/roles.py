"""Roles application entities play in notification delivery.

Application models opt in by subclassing ``Target`` (recipients) and/or
``Notifiable`` (subjects) and declaring their settings as class attributes.
Every setting accepts a literal, a ``MethodRef`` naming a method on the
entity, or a callable; see ``activity_notify.domain.values``.

Example:
    >>> class User(Target):
    ...     target_settings = TargetSettings(email=MethodRef("email"))
    ...
    >>> class Comment(Notifiable):
    ...     notification_settings = {
    ...         "user": NotifiableSettings(
    ...             targets=MethodRef("article_followers"),
    ...             group=MethodRef("article"),
    ...             notifier=MethodRef("author"),
    ...             optional_targets=[SlackWebhookChannel(webhook_url=...)],
    ...         ),
    ...     }
"""

import re
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, Iterable, List, Mapping, Optional

from activity_notify.config.duration import DurationParseError, to_seconds
from activity_notify.domain.references import EntityRef
from activity_notify.domain.values import resolve_value
from activity_notify.exceptions import NotifiableResolutionError


def _default_kind(cls: type) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", cls.__name__).lower()


class _Entity:
    """Shared reference behaviour for targets and notifiables."""

    entity_kind: ClassVar[Optional[str]] = None

    @classmethod
    def kind(cls) -> str:
        return cls.entity_kind or _default_kind(cls)

    def entity_id(self) -> Any:
        return getattr(self, "id")

    def to_entity_ref(self) -> EntityRef:
        return EntityRef(kind=self.kind(), id=self.entity_id())


@dataclass
class TargetSettings:
    """Recipient-side settings.

    Attributes:
        email: Email address for notification mail
        email_allowed: Whether the target accepts email, resolved with (notifiable, key)
        batch_email_allowed: Whether the target accepts batch email, resolved with (key)
        printable_name: Display name used in email bodies
    """

    email: Any = None
    email_allowed: Any = True
    batch_email_allowed: Any = True
    printable_name: Any = None


class Target(_Entity):
    """Base class for entities that receive notifications."""

    target_settings: ClassVar[TargetSettings] = TargetSettings()

    def notification_email(self) -> Optional[str]:
        return resolve_value(self.target_settings.email, self)

    def notification_email_allowed(self, notifiable: Any, key: str) -> bool:
        return bool(resolve_value(self.target_settings.email_allowed, self, notifiable, key))

    def batch_notification_email_allowed(self, key: str) -> bool:
        return bool(resolve_value(self.target_settings.batch_email_allowed, self, key))

    def printable_target_name(self) -> str:
        name = resolve_value(self.target_settings.printable_name, self)
        return str(name) if name is not None else str(self.to_entity_ref())


@dataclass
class NotifiableSettings:
    """Per target-kind settings of a notifiable.

    Settings other than ``email_allowed`` are resolved with (notifiable, key);
    ``email_allowed`` is resolved with (notifiable, target, key).

    Attributes:
        targets: Recipients of notifications for this target kind
        group: Entity notifications are bundled under
        notifier: Entity credited as the actor
        parameters: Extra parameters stored on every notification
        email_allowed: Whether email may be sent for this notifiable
        optional_targets: Optional channels available for cascades
        group_expiry_delay: Bundling window (duration); None keeps bundles open until read
    """

    targets: Any = field(default_factory=list)
    group: Any = None
    notifier: Any = None
    parameters: Any = field(default_factory=dict)
    email_allowed: Any = True
    optional_targets: Any = field(default_factory=list)
    group_expiry_delay: Any = None


_EMPTY_SETTINGS = NotifiableSettings()


class Notifiable(_Entity):
    """Base class for entities notifications are about.

    ``notification_settings`` maps a target kind (as returned by
    ``Target.kind()``) to its ``NotifiableSettings``. The core only reads
    from notifiables; it never mutates them.
    """

    notification_settings: ClassVar[Dict[str, NotifiableSettings]] = {}

    def default_notification_key(self) -> str:
        return f"{self.kind()}.default"

    def settings_for(self, target_kind: str) -> NotifiableSettings:
        """Settings for a target kind; unconfigured kinds get empty defaults."""
        return self.notification_settings.get(target_kind) or _EMPTY_SETTINGS

    def notification_targets(self, target_kind: str, key: Optional[str] = None) -> Iterable[Any]:
        """Candidate targets for a kind and key. Iterables are returned as is so
        large collections (query cursors, generators) can be streamed."""
        key = key or self.default_notification_key()
        targets = resolve_value(self.settings_for(target_kind).targets, self, key)
        if targets is None:
            return []
        return targets

    def notification_group(self, target_kind: str, key: Optional[str] = None) -> Any:
        key = key or self.default_notification_key()
        return resolve_value(self.settings_for(target_kind).group, self, key)

    def notifier(self, target_kind: str, key: Optional[str] = None) -> Any:
        key = key or self.default_notification_key()
        return resolve_value(self.settings_for(target_kind).notifier, self, key)

    def notification_parameters(self, target_kind: str, key: Optional[str] = None) -> Dict[str, Any]:
        key = key or self.default_notification_key()
        parameters = resolve_value(self.settings_for(target_kind).parameters, self, key)
        if parameters is None:
            return {}
        if not isinstance(parameters, Mapping):
            raise NotifiableResolutionError(
                f"Notification parameters for '{target_kind}' must be a mapping, got {type(parameters).__name__}"
            )
        return dict(parameters)

    def notification_email_allowed(self, target: Any, key: Optional[str] = None) -> bool:
        target_kind = target.kind() if isinstance(target, _Entity) else target.kind
        key = key or self.default_notification_key()
        return bool(resolve_value(self.settings_for(target_kind).email_allowed, self, target, key))

    def optional_channels(self, target_kind: str, key: Optional[str] = None) -> List[Any]:
        """Optional channels for a kind and key. Empty when the kind is unknown."""
        key = key or self.default_notification_key()
        return list(resolve_value(self.settings_for(target_kind).optional_targets, self, key) or [])

    def group_expiry_delay(self, target_kind: str, key: Optional[str] = None) -> Optional[float]:
        """Bundling window in seconds, or None when bundles stay open until read.

        Raises:
            NotifiableResolutionError: If the configured delay is not a duration
        """
        key = key or self.default_notification_key()
        value = resolve_value(self.settings_for(target_kind).group_expiry_delay, self, key)
        if value is None:
            return None
        try:
            return to_seconds(value)
        except DurationParseError as e:
            raise NotifiableResolutionError(f"Invalid group_expiry_delay: {e}") from e
