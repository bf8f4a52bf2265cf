"""Tests for optional delivery channels."""

from unittest.mock import MagicMock

import pytest
import requests

from activity_notify.channels import OptionalChannel, SlackWebhookChannel
from activity_notify.domain.models import Notification
from activity_notify.domain.references import EntityRef
from activity_notify.exceptions import ChannelDeliveryError

WEBHOOK = "https://hooks.slack.com/services/T000/B000/XXXX"


@pytest.fixture
def notification():
    return Notification(
        id=3,
        target=EntityRef(kind="user", id=1),
        notifiable=EntityRef(kind="comment", id=9),
        key="comment.created",
        notifier=EntityRef(kind="user", id=2),
        parameters={"body": "hello"},
    )


@pytest.fixture
def http():
    """Mock requests session returning 200."""
    session = MagicMock()
    session.post.return_value = MagicMock(status_code=200, text="ok")
    return session


class PagerDutyChannel(OptionalChannel):
    def notify(self, notification, options=None):
        return self.merged_options(options)


class TestOptionalChannel:
    """Tests for the channel base class."""

    def test_name_derived_from_class(self):
        """Test the name is the snake-cased class name without Channel."""
        assert PagerDutyChannel().name == "pager_duty"
        assert SlackWebhookChannel(session=MagicMock()).name == "slack"

    def test_call_options_override_defaults(self, notification):
        """Test per-call options win over constructor options."""
        channel = PagerDutyChannel(severity="low", service="web")

        assert channel.notify(notification, {"severity": "high"}) == {"severity": "high", "service": "web"}


class TestSlackWebhookChannel:
    """Tests for the Slack webhook channel."""

    def test_posts_rendered_payload(self, notification, http):
        """Test the payload carries rendered text and passthrough fields."""
        channel = SlackWebhookChannel(session=http, webhook_url=WEBHOOK, channel="#alerts")

        status = channel.notify(notification, {"mention": "U123", "timeout": 5})

        assert status == 200
        http.post.assert_called_once_with(
            WEBHOOK,
            json={"text": "<@U123> New notification: comment.created from user:2", "channel": "#alerts"},
            timeout=5,
        )

    def test_custom_message_template(self, notification, http):
        """Test message templates see notification parameters."""
        channel = SlackWebhookChannel(session=http, webhook_url=WEBHOOK)

        channel.notify(notification, {"message_template": "{{ parameters.body }}!"})

        assert http.post.call_args.kwargs["json"] == {"text": "hello!"}

    def test_missing_webhook_url(self, notification, http):
        """Test an unconfigured webhook raises."""
        channel = SlackWebhookChannel(session=http)

        with pytest.raises(ChannelDeliveryError) as exc_info:
            channel.notify(notification)

        assert exc_info.value.channel == "slack"
        http.post.assert_not_called()

    def test_http_error_status(self, notification, http):
        """Test error responses raise ChannelDeliveryError."""
        http.post.return_value = MagicMock(status_code=404, text="no_service")
        channel = SlackWebhookChannel(session=http, webhook_url=WEBHOOK)

        with pytest.raises(ChannelDeliveryError, match="HTTP 404"):
            channel.notify(notification)

    def test_timeout(self, notification, http):
        """Test timeouts are wrapped."""
        http.post.side_effect = requests.exceptions.Timeout()
        channel = SlackWebhookChannel(session=http, webhook_url=WEBHOOK)

        with pytest.raises(ChannelDeliveryError, match="timed out"):
            channel.notify(notification)

    def test_connection_error(self, notification, http):
        """Test request failures are wrapped."""
        http.post.side_effect = requests.exceptions.ConnectionError("refused")
        channel = SlackWebhookChannel(session=http, webhook_url=WEBHOOK)

        with pytest.raises(ChannelDeliveryError, match="request failed"):
            channel.notify(notification)

    def test_invalid_template(self, notification, http):
        """Test broken templates raise before posting."""
        channel = SlackWebhookChannel(session=http, webhook_url=WEBHOOK)

        with pytest.raises(ChannelDeliveryError):
            channel.notify(notification, {"message_template": "{{ missing }}"})

        http.post.assert_not_called()
