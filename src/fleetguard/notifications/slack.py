"""Slack notification channel.

Alerts are posted to Slack incoming webhooks as Block Kit messages. Delivery
is retried on server errors and transport failures; client errors (4xx) fail
immediately.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from fleetguard.models import Alert, AlertSeverity
from fleetguard.notifications.webhooks import SlackWebhook

logger = logging.getLogger("fleetguard.notifications.slack")

_SEVERITY_EMOJI: dict[AlertSeverity, str] = {
    AlertSeverity.CRITICAL: ":red_circle:",
    AlertSeverity.WARNING: ":orange_circle:",
    AlertSeverity.INFO: ":blue_circle:",
}


class NotificationError(Exception):
    """Raised when a notification could not be delivered."""


class _RetryableDelivery(Exception):
    """5xx or transport error; worth another attempt."""


def build_slack_payload(alert: Alert) -> dict[str, Any]:
    """Construct the Block Kit payload for *alert*."""
    emoji = _SEVERITY_EMOJI.get(alert.severity, ":bell:")
    blocks: list[dict[str, Any]] = [
        {
            "type": "header",
            "text": {
                "type": "plain_text",
                "text": f"{emoji} {alert.severity.value.upper()}: {alert.rule_name}",
                "emoji": True,
            },
        },
        {
            "type": "section",
            "fields": [
                {"type": "mrkdwn", "text": f"*Cluster:* {alert.cluster or 'N/A'}"},
                {"type": "mrkdwn", "text": f"*Resource:* {alert.resource or 'N/A'}"},
            ],
        },
        {
            "type": "section",
            "text": {"type": "mrkdwn", "text": alert.message},
        },
    ]

    if alert.ai_diagnosis:
        text = f"*AI Analysis:*\n{alert.ai_diagnosis.summary}"
        if alert.ai_diagnosis.suggestions:
            bullets = "\n".join(f"• {s}" for s in alert.ai_diagnosis.suggestions)
            text += f"\n\n*Suggestions:*\n{bullets}"
        blocks.append({"type": "section", "text": {"type": "mrkdwn", "text": text}})

    fired_at = alert.fired_at.strftime("%Y-%m-%d %H:%M:%S UTC")
    blocks.append({
        "type": "context",
        "elements": [
            {"type": "mrkdwn", "text": f"Alert ID: `{alert.id}` | Fired at: {fired_at}"},
        ],
    })

    payload: dict[str, Any] = {"blocks": blocks, "text": f"{alert.rule_name}: {alert.message}"}
    return payload


class SlackNotifier:
    """Posts alerts to Slack incoming webhooks.

    Args:
        timeout: HTTP request timeout in seconds.
        retry_attempts: Total attempts for 5xx/transport failures.
        retry_multiplier: Backoff multiplier in seconds; 0 disables waiting.
        transport: Optional httpx transport (tests use ``httpx.MockTransport``).
    """

    _RETRY_WAIT_MAX = 8  # seconds

    def __init__(
        self,
        timeout: float = 10.0,
        retry_attempts: int = 3,
        retry_multiplier: float = 1.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self._retry_attempts = max(retry_attempts, 1)
        self._retry_multiplier = retry_multiplier
        self._transport = transport

    def send(self, alert: Alert, webhook: SlackWebhook) -> None:
        """Deliver *alert* to *webhook*.

        Raises:
            NotificationError: On a 4xx response or once retries are exhausted.
        """
        payload = build_slack_payload(alert)
        if webhook.channel:
            payload["channel"] = webhook.channel

        @retry(
            retry=retry_if_exception_type(_RetryableDelivery),
            stop=stop_after_attempt(self._retry_attempts),
            wait=wait_exponential(multiplier=self._retry_multiplier, max=self._RETRY_WAIT_MAX),
            reraise=True,
        )
        def _post(client: httpx.Client) -> None:
            try:
                response = client.post(webhook.webhook_url, json=payload)
            except httpx.HTTPError as e:
                logger.warning("Slack delivery attempt failed: %s", e, extra={"alert_id": alert.id})
                raise _RetryableDelivery(str(e)) from e
            if response.status_code >= 500:
                logger.warning(
                    "Slack returned HTTP %d", response.status_code, extra={"alert_id": alert.id},
                )
                raise _RetryableDelivery(f"HTTP {response.status_code}")
            if response.status_code >= 400:
                raise NotificationError(
                    f"Slack rejected notification: HTTP {response.status_code} "
                    f"{response.text[:200]}"
                )

        with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
            try:
                _post(client)
            except _RetryableDelivery as e:
                raise NotificationError(
                    f"Slack delivery failed after {self._retry_attempts} attempt(s): {e}"
                ) from e

        logger.info("Slack notification sent to %s", webhook.name, extra={"alert_id": alert.id})
