"""Pod restart-count evaluator."""

from __future__ import annotations

from fleetguard.evaluators.base import BaseEvaluator, in_scope
from fleetguard.models import AlertRule, Finding, FleetSnapshot


class CrashLoopEvaluator(BaseEvaluator):
    """Fires once per pod whose restart count reaches the threshold (default 5)."""

    @property
    def condition_types(self) -> tuple[str, ...]:
        return ("crash_loop", "pod_crash")

    @property
    def default_threshold(self) -> float:
        return 5

    def evaluate(self, rule: AlertRule, snapshot: FleetSnapshot) -> list[Finding]:
        findings: list[Finding] = []
        threshold = self.threshold(rule)

        for issue in snapshot.pod_issues:
            if not issue.restarts or issue.restarts < threshold:
                continue
            if not in_scope(issue.cluster, rule.condition.clusters):
                continue
            if not in_scope(issue.namespace, rule.condition.namespaces):
                continue

            findings.append(Finding(
                message=f"Pod {issue.name} has restarted {issue.restarts} times ({issue.status})",
                details={
                    "restarts": issue.restarts,
                    "status": issue.status,
                    "reason": issue.reason,
                },
                cluster=issue.cluster,
                namespace=issue.namespace,
                resource=issue.name,
                resource_kind="Pod",
            ))

        return findings

    def evaluated_clusters(self, rule: AlertRule, snapshot: FleetSnapshot) -> set[str | None]:
        covered = super().evaluated_clusters(rule, snapshot)
        covered.update(
            issue.cluster for issue in snapshot.pod_issues
            if issue.cluster and in_scope(issue.cluster, rule.condition.clusters)
        )
        return covered
