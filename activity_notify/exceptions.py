"""Exceptions raised while delivering notifications.

Configuration and persistence errors live in their own packages
(``activity_notify.config.exceptions`` and
``activity_notify.persistence.exceptions``).
"""


class NotificationError(Exception):
    """Base exception for notification delivery errors."""

    pass


class NotifiableResolutionError(NotificationError):
    """Raised when a notifiable cannot resolve a setting for a target kind."""

    pass


class NotificationTemplateError(NotificationError):
    """Raised when email template rendering fails."""

    pass


class EmailDeliveryError(NotificationError):
    """Raised when notification email cannot be delivered."""

    pass


class SMTPDeliveryError(EmailDeliveryError):
    """Raised when the SMTP conversation fails."""

    pass


class ChannelDeliveryError(NotificationError):
    """Raised by optional channels when an out-of-band delivery fails."""

    def __init__(self, message: str, channel: str):
        self.channel = channel
        super().__init__(message)
