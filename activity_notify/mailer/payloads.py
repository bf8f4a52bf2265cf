"""Template context builders for notification email."""

from typing import Any, Dict, List, Optional

from activity_notify.domain.models import Notification


def _notification_fields(notification: Notification) -> Dict[str, Any]:
    return {
        "id": notification.id,
        "key": notification.key,
        "notifiable": str(notification.notifiable),
        "notifier": str(notification.notifier) if notification.notifier else None,
        "group": str(notification.group) if notification.group else None,
        "parameters": dict(notification.parameters),
        "created_at": notification.created_at.isoformat() if notification.created_at else None,
    }


def build_notification_context(notification: Notification, target_name: str) -> Dict[str, Any]:
    """Build the template context for a single notification email.

    Every variable the templates reference is present (templates render with
    StrictUndefined). A ``subject`` parameter overrides the default subject.

    Args:
        notification: Notification being delivered
        target_name: Printable name of the recipient

    Returns:
        Dictionary with keys: target_name, subject, id, key, notifiable,
        notifier, group, parameters, created_at
    """
    fields = _notification_fields(notification)
    return {
        **fields,
        "target_name": target_name,
        "subject": notification.parameters.get("subject"),
    }


def build_batch_context(
    notifications: List[Notification], target_name: str, batch_key: Optional[str]
) -> Dict[str, Any]:
    """Build the template context for a batch email."""
    return {
        "target_name": target_name,
        "batch_key": batch_key,
        "count": len(notifications),
        "notifications": [_notification_fields(n) for n in notifications],
    }
