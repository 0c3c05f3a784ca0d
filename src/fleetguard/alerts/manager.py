"""Alert Lifecycle Manager: findings -> deduplicated alerts -> resolution."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError

from fleetguard.collectors.base import BaseSnapshotSource
from fleetguard.evaluators import EvaluatorRegistry, default_registry
from fleetguard.missions.base import BaseMissionRunner, MissionDispatchError, MissionSpec
from fleetguard.missions.prompts import render_alert_prompt
from fleetguard.models import (
    AIDiagnosis,
    Alert,
    AlertRule,
    AlertSeverity,
    AlertStats,
    AlertStatus,
    FleetSnapshot,
)
from fleetguard.rules.store import RuleStore
from fleetguard.store import ALERTS_KEY, KeyValueStore

logger = logging.getLogger("fleetguard.alerts")

_IN_PROGRESS_SUMMARY = "AI analysis in progress..."


class AlertManager:
    """Owns the alert collection and every mutation of it.

    Invariant: at most one firing alert exists per ``(rule_id, cluster,
    resource)``. Re-detection reuses the firing alert unchanged; a resolved
    alert is never reopened, so a later detection creates a new one.

    External readers get deep copies and must go through this class to mutate
    anything. Every call reloads the list from the key-value store first, so
    several managers sharing one database file see each other's writes.

    Args:
        rule_store: Source of enabled rules.
        kv_store: Local persistence for the alert list.
        snapshot_source: Used by :meth:`evaluate` when no snapshot is passed in.
        mission_runner: Used by :meth:`run_ai_diagnosis`.
        registry: Condition type -> evaluator mapping. Defaults to the built-ins.
    """

    def __init__(
        self,
        rule_store: RuleStore,
        kv_store: KeyValueStore,
        snapshot_source: BaseSnapshotSource | None = None,
        mission_runner: BaseMissionRunner | None = None,
        registry: EvaluatorRegistry | None = None,
    ) -> None:
        self._rules = rule_store
        self._kv = kv_store
        self._source = snapshot_source
        self._missions = mission_runner
        self._registry = registry or default_registry()
        self._lock = threading.RLock()
        # Held for the duration of one evaluate(); overlapping calls are dropped.
        self._evaluate_lock = threading.Lock()
        self._alerts: list[Alert] = self._load()
        self._last_evaluated_at: datetime | None = None

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    @property
    def is_evaluating(self) -> bool:
        return self._evaluate_lock.locked()

    @property
    def last_evaluated_at(self) -> datetime | None:
        return self._last_evaluated_at

    def alerts(self, status: AlertStatus | str | None = None) -> list[Alert]:
        """All alerts, newest first, optionally filtered by status."""
        wanted = AlertStatus(status) if status else None
        with self._lock:
            self._refresh_locked()
            return [
                a.model_copy(deep=True)
                for a in self._alerts
                if wanted is None or a.status == wanted
            ]

    def active_alerts(self) -> list[Alert]:
        return self.alerts(AlertStatus.FIRING)

    def get(self, alert_id: str) -> Alert | None:
        with self._lock:
            self._refresh_locked()
            alert = self._find(alert_id)
            return alert.model_copy(deep=True) if alert else None

    def stats(self) -> AlertStats:
        with self._lock:
            self._refresh_locked()
            firing = [a for a in self._alerts if a.is_firing]
            return AlertStats(
                total=len(self._alerts),
                firing=len(firing),
                resolved=len(self._alerts) - len(firing),
                critical=sum(1 for a in firing if a.severity == AlertSeverity.CRITICAL),
                warning=sum(1 for a in firing if a.severity == AlertSeverity.WARNING),
                info=sum(1 for a in firing if a.severity == AlertSeverity.INFO),
                acknowledged=sum(1 for a in firing if a.acknowledged_at is not None),
            )

    # -------------------------------------------------------------------------
    # Evaluation
    # -------------------------------------------------------------------------

    def evaluate(self, snapshot: FleetSnapshot | None = None) -> list[Alert]:
        """Run every enabled rule against *snapshot* and reconcile alerts.

        For each finding the matching firing alert is reused or a new one is
        created. Firing alerts of an evaluated rule whose (cluster, resource)
        produced no finding this pass are resolved, but only in clusters the
        evaluator reports as covered by *snapshot*. A rule whose evaluator
        raises is skipped entirely and its alerts are left as they are.

        If another evaluation is already running this call does nothing.

        Args:
            snapshot: Fleet data to evaluate. When omitted it is collected from
                the configured snapshot source.

        Returns:
            Firing alerts for the rules evaluated in this pass (empty when the
            call was skipped).

        Raises:
            RuntimeError: If no snapshot was given and no source is configured.
        """
        if not self._evaluate_lock.acquire(blocking=False):
            logger.debug("Evaluation already in progress, skipping")
            return []

        try:
            if snapshot is None:
                if self._source is None:
                    raise RuntimeError("No snapshot given and no snapshot source configured")
                snapshot = self._source.collect()
            return self._evaluate_snapshot(snapshot)
        finally:
            self._evaluate_lock.release()

    def _evaluate_snapshot(self, snapshot: FleetSnapshot) -> list[Alert]:
        # Evaluators run outside the lock; reconciliation happens in one hold.
        outcomes = []
        for rule in self._rules.enabled():
            try:
                findings = self._registry.evaluate(rule, snapshot)
                covered = self._registry.evaluated_clusters(rule, snapshot)
            except Exception as e:
                logger.error("Evaluator failed for rule %s: %s", rule.name, e, extra={"rule_id": rule.id})
                continue
            outcomes.append((rule, findings, covered))

        firing: dict[str, Alert] = {}
        created = resolved = 0

        with self._lock:
            self._refresh_locked()
            for rule, findings, covered in outcomes:
                seen: set[tuple[str | None, str | None]] = set()
                for finding in findings:
                    alert, is_new = self._create_or_reuse_locked(
                        rule,
                        finding.message,
                        finding.details,
                        cluster=finding.cluster,
                        namespace=finding.namespace,
                        resource=finding.resource,
                        resource_kind=finding.resource_kind,
                    )
                    created += is_new
                    seen.add(finding.scope_key)
                    firing[alert.id] = alert

                # Only clusters the snapshot let us judge can clear an alert.
                for alert in self._alerts:
                    if (
                        alert.rule_id == rule.id
                        and alert.is_firing
                        and alert.cluster in covered
                        and (alert.cluster, alert.resource) not in seen
                    ):
                        self._resolve_locked(alert)
                        resolved += 1

            if created or resolved:
                self._save_locked()
            self._last_evaluated_at = datetime.now(timezone.utc)
            result = [a.model_copy(deep=True) for a in firing.values()]

        logger.info(
            "Evaluation complete: %d firing, %d new, %d resolved",
            len(result), created, resolved,
        )
        return result

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def create_or_reuse_alert(
        self,
        rule: AlertRule,
        message: str,
        details: dict[str, Any] | None = None,
        cluster: str | None = None,
        namespace: str | None = None,
        resource: str | None = None,
        resource_kind: str | None = None,
    ) -> Alert:
        """Return the firing alert for (rule, cluster, resource), creating it if needed.

        A reused alert keeps the message and details of its first detection.
        """
        with self._lock:
            self._refresh_locked()
            alert, is_new = self._create_or_reuse_locked(
                rule,
                message,
                details or {},
                cluster=cluster,
                namespace=namespace,
                resource=resource,
                resource_kind=resource_kind,
            )
            if is_new:
                self._save_locked()
            return alert.model_copy(deep=True)

    def acknowledge(self, alert_id: str, by: str | None = None) -> Alert | None:
        """Mark an alert as acknowledged. Does nothing if the alert is unknown."""
        with self._lock:
            self._refresh_locked()
            alert = self._find(alert_id)
            if alert is None:
                return None
            alert.acknowledged_at = datetime.now(timezone.utc)
            alert.acknowledged_by = by
            self._save_locked()
            logger.info("Alert acknowledged by %s", by or "unknown", extra={"alert_id": alert_id})
            return alert.model_copy(deep=True)

    def resolve(self, alert_id: str) -> Alert | None:
        """Resolve an alert. Resolving an already-resolved alert changes nothing."""
        with self._lock:
            self._refresh_locked()
            alert = self._find(alert_id)
            if alert is None:
                return None
            if alert.is_firing:
                self._resolve_locked(alert)
                self._save_locked()
            return alert.model_copy(deep=True)

    def delete(self, alert_id: str) -> bool:
        with self._lock:
            self._refresh_locked()
            before = len(self._alerts)
            self._alerts = [a for a in self._alerts if a.id != alert_id]
            removed = len(self._alerts) != before
            if removed:
                self._save_locked()
        if removed:
            logger.info("Alert deleted", extra={"alert_id": alert_id})
        return removed

    def run_ai_diagnosis(self, alert_id: str) -> str | None:
        """Start an AI diagnosis mission for an alert.

        Records a placeholder diagnosis carrying the mission id; the real
        analysis arrives later through :meth:`record_ai_diagnosis`.

        Returns:
            The mission id, or None if the alert does not exist.

        Raises:
            MissionDispatchError: If no runner is configured or dispatch fails.
                The alert's diagnosis is left untouched in that case.
        """
        alert = self.get(alert_id)
        if alert is None:
            return None
        if self._missions is None:
            raise MissionDispatchError("No mission runner configured")

        spec = MissionSpec(
            title=f"Diagnose: {alert.rule_name}",
            description=f"Analyzing alert on {alert.cluster or 'cluster'}",
            type="troubleshoot",
            cluster=alert.cluster,
            initial_prompt=render_alert_prompt(alert),
            context={
                "alert_id": alert.id,
                "alert_type": alert.rule_name,
                "details": alert.details,
            },
        )
        try:
            mission_id = self._missions.start_mission(spec)
        except Exception as e:
            logger.error("AI diagnosis dispatch failed: %s", e, extra={"alert_id": alert_id})
            raise

        with self._lock:
            self._refresh_locked()
            current = self._find(alert_id)
            if current is not None:
                current.ai_diagnosis = AIDiagnosis(
                    summary=_IN_PROGRESS_SUMMARY,
                    mission_id=mission_id,
                )
                self._save_locked()
        logger.info("AI diagnosis started", extra={"alert_id": alert_id, "mission_id": mission_id})
        return mission_id

    def record_ai_diagnosis(
        self,
        mission_id: str,
        summary: str,
        root_cause: str = "",
        suggestions: list[str] | None = None,
    ) -> Alert | None:
        """Attach a finished analysis to the alert whose diagnosis mission is *mission_id*."""
        with self._lock:
            self._refresh_locked()
            for alert in self._alerts:
                if alert.ai_diagnosis and alert.ai_diagnosis.mission_id == mission_id:
                    alert.ai_diagnosis = AIDiagnosis(
                        summary=summary,
                        root_cause=root_cause,
                        suggestions=list(suggestions or []),
                        mission_id=mission_id,
                    )
                    self._save_locked()
                    return alert.model_copy(deep=True)
        return None

    # -------------------------------------------------------------------------
    # Private helpers (callers hold self._lock)
    # -------------------------------------------------------------------------

    def _find(self, alert_id: str) -> Alert | None:
        for alert in self._alerts:
            if alert.id == alert_id:
                return alert
        return None

    def _create_or_reuse_locked(
        self,
        rule: AlertRule,
        message: str,
        details: dict[str, Any],
        *,
        cluster: str | None,
        namespace: str | None,
        resource: str | None,
        resource_kind: str | None,
    ) -> tuple[Alert, bool]:
        key = (rule.id, cluster, resource)
        for existing in self._alerts:
            if existing.is_firing and existing.dedup_key == key:
                return existing, False

        alert = Alert(
            rule_id=rule.id,
            rule_name=rule.name,
            severity=rule.severity,
            message=message,
            details=dict(details),
            cluster=cluster,
            namespace=namespace,
            resource=resource,
            resource_kind=resource_kind,
        )
        self._alerts.insert(0, alert)
        logger.info(
            "Alert fired: %s", message,
            extra={"alert_id": alert.id, "rule_id": rule.id, "cluster": cluster},
        )
        return alert, True

    def _resolve_locked(self, alert: Alert) -> None:
        alert.status = AlertStatus.RESOLVED
        alert.resolved_at = datetime.now(timezone.utc)
        logger.info("Alert resolved: %s", alert.message, extra={"alert_id": alert.id})

    def _refresh_locked(self) -> None:
        # The store is shared with other processes (the CLI next to a running
        # server), so its copy wins over ours. An unreadable store keeps ours.
        stored = self._kv.load(ALERTS_KEY, None)
        if stored is not None:
            self._alerts = self._decode(stored)

    def _load(self) -> list[Alert]:
        return self._decode(self._kv.load(ALERTS_KEY, []))

    @staticmethod
    def _decode(stored: Any) -> list[Alert]:
        if not isinstance(stored, list):
            logger.warning("Stored alerts are not a list, ignoring them")
            return []
        alerts: list[Alert] = []
        for raw in stored:
            try:
                alerts.append(Alert.model_validate(raw))
            except ValidationError as e:
                logger.warning("Skipping corrupt stored alert: %s", e)
        return alerts

    def _save_locked(self) -> None:
        self._kv.save(ALERTS_KEY, [a.model_dump(mode="json") for a in self._alerts])
