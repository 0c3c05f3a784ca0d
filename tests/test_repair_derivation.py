"""Tests for default repair derivation."""

from __future__ import annotations

import pytest

from fleetguard.repair.derivation import (
    derive_action,
    derive_description,
    derive_risk,
    propose_repairs,
)
from fleetguard.repair.models import IssueResource, IssueSeverity, MonitorIssue, RepairRisk


def _issue(kind: str, status: str = "unhealthy", severity=IssueSeverity.WARNING, **kwargs):
    return MonitorIssue(
        title=kwargs.pop("title", f"{kind} broken"),
        description=kwargs.pop("description", "details"),
        severity=severity,
        resource=IssueResource(kind=kind, name="web", status=status),
        **kwargs,
    )


class TestDeriveAction:
    @pytest.mark.parametrize("kind", ["Deployment", "StatefulSet", "DaemonSet"])
    def test_unhealthy_workload_is_restarted(self, kind):
        assert derive_action(_issue(kind, "unhealthy")) == f"Restart {kind}"

    def test_degraded_workload_is_scaled(self):
        assert derive_action(_issue("Deployment", "degraded")) == "Scale Deployment"

    def test_missing_resource_is_created(self):
        assert derive_action(_issue("ConfigMap", "missing")) == "Create ConfigMap"
        assert derive_action(_issue("Deployment", "missing")) == "Create Deployment"

    def test_fixed_actions(self):
        assert derive_action(_issue("Service")) == "Check endpoints"
        assert derive_action(_issue("PersistentVolumeClaim")) == "Investigate PVC"

    def test_other_kinds_are_investigated(self):
        assert derive_action(_issue("Ingress")) == "Investigate Ingress"


class TestDeriveRisk:
    def test_critical_issue_is_medium(self):
        assert derive_risk(_issue("ConfigMap", severity=IssueSeverity.CRITICAL)) == RepairRisk.MEDIUM

    def test_replicated_controllers_are_medium(self):
        assert derive_risk(_issue("Deployment")) == RepairRisk.MEDIUM
        assert derive_risk(_issue("StatefulSet")) == RepairRisk.MEDIUM

    def test_everything_else_is_low(self):
        assert derive_risk(_issue("DaemonSet")) == RepairRisk.LOW
        assert derive_risk(_issue("Service", severity=IssueSeverity.INFO)) == RepairRisk.LOW

    def test_high_is_never_assigned(self):
        issues = [
            _issue(kind, status, severity)
            for kind in ("Deployment", "StatefulSet", "Service", "Pod")
            for status in ("unhealthy", "missing", "degraded")
            for severity in IssueSeverity
        ]
        assert RepairRisk.HIGH not in {derive_risk(i) for i in issues}


class TestProposeRepairs:
    def test_description(self):
        issue = _issue("Deployment", title="API down", description="0/3 replicas ready")
        assert derive_description(issue) == "Address: API down - 0/3 replicas ready"

    def test_one_unapproved_repair_per_issue(self):
        issues = [_issue("Deployment"), _issue("Service"), _issue("Secret", "missing")]
        repairs = propose_repairs(issues)

        assert [r.issue_id for r in repairs] == [i.id for i in issues]
        assert [r.action for r in repairs] == ["Restart Deployment", "Check endpoints", "Create Secret"]
        assert not any(r.approved for r in repairs)

    def test_ids_unique_within_and_across_batches(self):
        issues = [_issue("Deployment"), _issue("Service")]
        first = [r.id for r in propose_repairs(issues)]
        second = [r.id for r in propose_repairs(issues)]
        assert len(set(first)) == 2
        assert not set(first) & set(second)
        assert first[0].startswith("repair-0-")

    def test_empty(self):
        assert propose_repairs([]) == []
