"""Slack webhook registry, persisted under ``slack_webhooks``."""

from __future__ import annotations

import logging
import threading
from datetime import datetime

from pydantic import BaseModel, Field, ValidationError

from fleetguard.models import _utcnow, new_id
from fleetguard.store import SLACK_WEBHOOKS_KEY, KeyValueStore

logger = logging.getLogger("fleetguard.notifications")


class SlackWebhook(BaseModel):
    id: str = Field(default_factory=lambda: new_id("webhook"))
    name: str
    webhook_url: str
    channel: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)


class WebhookStore:
    """Named Slack webhooks.

    Args:
        kv_store: Backing key-value store.
    """

    def __init__(self, kv_store: KeyValueStore) -> None:
        self._kv = kv_store
        self._lock = threading.Lock()
        self._webhooks: list[SlackWebhook] = self._load()

    def list(self) -> list[SlackWebhook]:
        with self._lock:
            return [w.model_copy() for w in self._webhooks]

    def get(self, webhook_id: str) -> SlackWebhook | None:
        with self._lock:
            for webhook in self._webhooks:
                if webhook.id == webhook_id:
                    return webhook.model_copy()
        return None

    def add(self, name: str, webhook_url: str, channel: str | None = None) -> SlackWebhook:
        if not webhook_url.startswith(("https://", "http://")):
            raise ValueError("webhook_url must be an http(s) URL")
        webhook = SlackWebhook(name=name, webhook_url=webhook_url, channel=channel or None)
        with self._lock:
            self._webhooks.append(webhook)
            self._save_locked()
        logger.info("Webhook added: %s", name)
        return webhook.model_copy()

    def remove(self, webhook_id: str) -> bool:
        with self._lock:
            before = len(self._webhooks)
            self._webhooks = [w for w in self._webhooks if w.id != webhook_id]
            removed = len(self._webhooks) != before
            if removed:
                self._save_locked()
        return removed

    def _load(self) -> list[SlackWebhook]:
        stored = self._kv.load(SLACK_WEBHOOKS_KEY, [])
        webhooks: list[SlackWebhook] = []
        for raw in stored if isinstance(stored, list) else []:
            try:
                webhooks.append(SlackWebhook.model_validate(raw))
            except ValidationError as e:
                logger.warning("Skipping corrupt stored webhook: %s", e)
        return webhooks

    def _save_locked(self) -> None:
        self._kv.save(SLACK_WEBHOOKS_KEY, [w.model_dump(mode="json") for w in self._webhooks])
