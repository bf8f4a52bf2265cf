"""Notification storage and bundling."""

from .store import RESERVED_OPTIONS, NotificationStore

__all__ = [
    "NotificationStore",
    "RESERVED_OPTIONS",
]
