"""Optional channel contract.

Optional channels deliver a notification out of band (chat, SMS, webhooks)
in addition to the in-app feed and email. Notifiables expose the channels
they support per target kind; the cascade scheduler looks them up by name.
"""

import re
from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping, Optional

from activity_notify.domain.models import Notification


class OptionalChannel(ABC):
    """Base class for optional delivery channels.

    Subclasses implement ``notify``. The channel name defaults to the
    snake-cased class name without a trailing ``Channel``, so
    ``SlackWebhookChannel`` is named ``slack_webhook``; set ``channel_name``
    to override it.

    Options given at construction time are defaults; per-call options passed
    to ``notify`` (for example a cascade step's options) override them.
    """

    channel_name: Optional[str] = None

    def __init__(self, **options: Any):
        self.options: Dict[str, Any] = dict(options)

    @property
    def name(self) -> str:
        if self.channel_name:
            return self.channel_name
        base = re.sub(r"Channel$", "", type(self).__name__) or type(self).__name__
        return re.sub(r"(?<!^)(?=[A-Z])", "_", base).lower()

    def merged_options(self, options: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        return {**self.options, **dict(options or {})}

    @abstractmethod
    def notify(self, notification: Notification, options: Optional[Mapping[str, Any]] = None) -> Any:
        """Deliver the notification.

        Args:
            notification: Notification to deliver
            options: Per-call options overriding the channel defaults

        Returns:
            Channel specific delivery result

        Raises:
            ChannelDeliveryError: If delivery fails
        """

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"
