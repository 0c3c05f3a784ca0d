"""Alert notifications."""

from fleetguard.notifications.slack import NotificationError, SlackNotifier, build_slack_payload
from fleetguard.notifications.webhooks import SlackWebhook, WebhookStore

__all__ = [
    "NotificationError",
    "SlackNotifier",
    "SlackWebhook",
    "WebhookStore",
    "build_slack_payload",
]
