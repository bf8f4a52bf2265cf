"""Activity notifications with bundling, delayed cascades and subscriptions."""

from activity_notify.roles import Notifiable, NotifiableSettings, Target, TargetSettings

__version__ = "0.1.0"

__all__ = [
    "Target",
    "TargetSettings",
    "Notifiable",
    "NotifiableSettings",
    "__version__",
]
