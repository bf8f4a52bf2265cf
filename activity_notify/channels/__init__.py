"""Optional out-of-band delivery channels."""

from .base import OptionalChannel
from .slack import SlackWebhookChannel

__all__ = [
    "OptionalChannel",
    "SlackWebhookChannel",
]
