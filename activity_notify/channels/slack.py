"""Slack incoming-webhook channel."""

from typing import Any, Dict, Mapping, Optional

import requests
from jinja2 import Environment, StrictUndefined, TemplateError

from activity_notify.domain.models import Notification
from activity_notify.exceptions import ChannelDeliveryError
from activity_notify.logging import get_logger

from .base import OptionalChannel

logger = get_logger(__name__, component="channel")

DEFAULT_MESSAGE_TEMPLATE = (
    "{% if mention %}<@{{ mention }}> {% endif %}"
    "New notification: {{ notification.key }}"
    "{% if notification.notifier %} from {{ notification.notifier }}{% endif %}"
)


class SlackWebhookChannel(OptionalChannel):
    """Posts a message to a Slack incoming webhook.

    Options:
        webhook_url: Incoming webhook URL (required)
        mention: Slack user id to mention at the start of the message
        channel, username, icon_emoji: Passed through to the webhook payload
        message_template: Jinja2 template rendered with ``notification`` and ``mention``
        timeout: HTTP timeout in seconds (default 10)

    Example:
        >>> slack = SlackWebhookChannel(webhook_url="https://hooks.slack.com/services/T/B/X")
        >>> slack.notify(notification, {"mention": "U024BE7LH"})
    """

    channel_name = "slack"

    _PASSTHROUGH_FIELDS = ("channel", "username", "icon_emoji")

    def __init__(self, session: Optional[requests.Session] = None, **options: Any):
        super().__init__(**options)
        self._session = session or requests.Session()
        self._templates = Environment(undefined=StrictUndefined, autoescape=False)

    def render_message(self, notification: Notification, options: Mapping[str, Any]) -> str:
        """Render the message text for a notification.

        Raises:
            ChannelDeliveryError: If the message template is invalid
        """
        source = options.get("message_template", DEFAULT_MESSAGE_TEMPLATE)
        try:
            template = self._templates.from_string(source)
            return template.render(
                notification=notification,
                parameters=notification.parameters,
                mention=options.get("mention"),
            ).strip()
        except TemplateError as e:
            raise ChannelDeliveryError(f"Slack message template failed: {e}", channel=self.name) from e

    def build_payload(self, notification: Notification, options: Mapping[str, Any]) -> Dict[str, Any]:
        payload = {"text": self.render_message(notification, options)}
        for field in self._PASSTHROUGH_FIELDS:
            if options.get(field):
                payload[field] = options[field]
        return payload

    def notify(self, notification: Notification, options: Optional[Mapping[str, Any]] = None) -> int:
        """Post the notification to the webhook.

        Returns:
            HTTP status code of the webhook response

        Raises:
            ChannelDeliveryError: If the webhook is not configured or the post fails
        """
        merged = self.merged_options(options)
        webhook_url = merged.get("webhook_url")
        if not webhook_url:
            raise ChannelDeliveryError("Slack webhook_url is not configured", channel=self.name)

        payload = self.build_payload(notification, merged)
        timeout = merged.get("timeout", 10)

        try:
            response = self._session.post(webhook_url, json=payload, timeout=timeout)
        except requests.exceptions.Timeout as e:
            logger.warning(
                f"Slack webhook timed out after {timeout} seconds",
                extra={"event": "channel.slack.timeout", "notification_id": notification.id},
            )
            raise ChannelDeliveryError(
                f"Slack webhook timed out after {timeout} seconds", channel=self.name
            ) from e
        except requests.exceptions.RequestException as e:
            logger.error(
                f"Slack webhook request failed: {e}",
                extra={"event": "channel.slack.error", "error_type": type(e).__name__},
            )
            raise ChannelDeliveryError(f"Slack webhook request failed: {e}", channel=self.name) from e

        if response.status_code >= 400:
            logger.error(
                f"Slack webhook returned HTTP {response.status_code}",
                extra={
                    "event": "channel.slack.error",
                    "status_code": response.status_code,
                    "notification_id": notification.id,
                },
            )
            raise ChannelDeliveryError(
                f"Slack webhook returned HTTP {response.status_code}: {response.text}",
                channel=self.name,
            )

        logger.info(
            f"Posted notification {notification.id} to Slack",
            extra={"event": "channel.slack.sent", "notification_id": notification.id},
        )
        return response.status_code
