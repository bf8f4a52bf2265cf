"""Fan-out of notifications to targets and their email delivery."""

from .dispatcher import DeliveryDispatcher

__all__ = [
    "DeliveryDispatcher",
]
