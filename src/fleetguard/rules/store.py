"""Rule Store: the enabled/disabled alert rules, persisted locally."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable

from pydantic import ValidationError

from fleetguard.models import AlertCondition, AlertRule, AlertSeverity
from fleetguard.rules.presets import build_preset_rules
from fleetguard.store import ALERT_RULES_KEY, KeyValueStore

logger = logging.getLogger("fleetguard.rules")

_UPDATABLE_FIELDS = {"name", "description", "severity", "enabled", "condition"}

RuleListener = Callable[[list[AlertRule]], None]


class RuleStore:
    """Holds alert rules and persists every change.

    On first use (no stored rules) the built-in presets are seeded and saved.
    Listeners registered with :meth:`add_listener` are called after each
    mutation with the new rule list; the evaluation scheduler uses this to
    re-evaluate shortly after the rule set changes.

    Args:
        kv_store: Backing key-value store.
    """

    def __init__(self, kv_store: KeyValueStore) -> None:
        self._kv = kv_store
        self._lock = threading.RLock()
        self._listeners: list[RuleListener] = []
        self._rules: list[AlertRule] = self._load()

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def list(self) -> list[AlertRule]:
        with self._lock:
            return [r.model_copy(deep=True) for r in self._rules]

    def enabled(self) -> list[AlertRule]:
        with self._lock:
            return [r.model_copy(deep=True) for r in self._rules if r.enabled]

    def get(self, rule_id: str) -> AlertRule | None:
        with self._lock:
            for rule in self._rules:
                if rule.id == rule_id:
                    return rule.model_copy(deep=True)
        return None

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def create(
        self,
        name: str,
        condition: AlertCondition | dict[str, Any],
        severity: AlertSeverity | str = AlertSeverity.WARNING,
        enabled: bool = True,
        description: str = "",
    ) -> AlertRule:
        """Create and store a new rule."""
        now = datetime.now(timezone.utc)
        rule = AlertRule.model_validate({
            "name": name,
            "description": description,
            "severity": severity,
            "enabled": enabled,
            "condition": condition,
            "created_at": now,
            "updated_at": now,
        })
        with self._lock:
            self._rules.append(rule)
        logger.info("Rule created: %s (%s)", rule.name, rule.condition.type, extra={"rule_id": rule.id})
        self._changed()
        return rule.model_copy(deep=True)

    def update(self, rule_id: str, **changes: Any) -> AlertRule | None:
        """Apply *changes* to a rule and bump ``updated_at``.

        Only name, description, severity, enabled and condition may change.

        Returns:
            The updated rule, or None if no rule has that id.

        Raises:
            ValueError: On unknown fields or values that fail validation.
        """
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update rule field(s): {', '.join(sorted(unknown))}")

        with self._lock:
            for idx, rule in enumerate(self._rules):
                if rule.id != rule_id:
                    continue
                data = rule.model_dump()
                data.update(changes)
                data["updated_at"] = datetime.now(timezone.utc)
                try:
                    updated = AlertRule.model_validate(data)
                except ValidationError as e:
                    raise ValueError(str(e)) from e
                self._rules[idx] = updated
                break
            else:
                return None

        logger.info("Rule updated: %s", updated.name, extra={"rule_id": rule_id})
        self._changed()
        return updated.model_copy(deep=True)

    def toggle(self, rule_id: str) -> AlertRule | None:
        """Flip a rule's enabled flag."""
        rule = self.get(rule_id)
        if rule is None:
            return None
        return self.update(rule_id, enabled=not rule.enabled)

    def delete(self, rule_id: str) -> bool:
        """Remove a rule. Alerts it raised are left untouched."""
        with self._lock:
            before = len(self._rules)
            self._rules = [r for r in self._rules if r.id != rule_id]
            removed = len(self._rules) != before
        if removed:
            logger.info("Rule deleted", extra={"rule_id": rule_id})
            self._changed()
        return removed

    def add_listener(self, listener: RuleListener) -> None:
        self._listeners.append(listener)

    # -------------------------------------------------------------------------
    # Private helpers
    # -------------------------------------------------------------------------

    def _load(self) -> list[AlertRule]:
        stored = self._kv.load(ALERT_RULES_KEY, [])
        rules: list[AlertRule] = []
        if isinstance(stored, list):
            for raw in stored:
                try:
                    rules.append(AlertRule.model_validate(raw))
                except ValidationError as e:
                    logger.warning("Skipping corrupt stored rule: %s", e)
        else:
            logger.warning("Stored rules are not a list, ignoring them")

        if not rules:
            rules = build_preset_rules()
            self._kv.save(ALERT_RULES_KEY, [r.model_dump(mode="json") for r in rules])
            logger.info("Seeded %d preset rule(s)", len(rules))
        return rules

    def _changed(self) -> None:
        with self._lock:
            snapshot = [r.model_copy(deep=True) for r in self._rules]
            self._kv.save(ALERT_RULES_KEY, [r.model_dump(mode="json") for r in snapshot])
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error("Rule listener failed: %s", e)
