"""Per-target subscription gating."""

from .resolver import SubscriptionResolver

__all__ = ["SubscriptionResolver"]
