"""Resource pool usage evaluator (GPU allocation by default)."""

from __future__ import annotations

from fleetguard.evaluators.base import BaseEvaluator, in_scope
from fleetguard.models import (
    DEFAULT_RESOURCE_POOL,
    AlertRule,
    Finding,
    FleetSnapshot,
    NodeCapacity,
)


def _node_in_cluster(node: NodeCapacity, cluster_name: str) -> bool:
    # Node cluster names may carry a context suffix, e.g. "prod/gke-prod".
    return node.cluster == cluster_name or node.cluster.startswith(f"{cluster_name}/")


class ResourceUsageEvaluator(BaseEvaluator):
    """Fires when allocated/total for a resource pool exceeds the threshold.

    The pool is ``rule.condition.resource`` (default ``nvidia.com/gpu``) summed
    over every node of an in-scope cluster. Clusters with no capacity in the
    pool are skipped.
    """

    @property
    def condition_types(self) -> tuple[str, ...]:
        return ("resource_usage", "gpu_usage")

    @property
    def default_threshold(self) -> float:
        return 90.0

    def evaluate(self, rule: AlertRule, snapshot: FleetSnapshot) -> list[Finding]:
        findings: list[Finding] = []
        threshold = self.threshold(rule)
        pool = rule.condition.resource or DEFAULT_RESOURCE_POOL

        for cluster in snapshot.clusters:
            if not in_scope(cluster.name, rule.condition.clusters):
                continue

            nodes = [
                n for n in snapshot.nodes
                if n.resource == pool and _node_in_cluster(n, cluster.name)
            ]
            total = sum(n.capacity for n in nodes)
            allocated = sum(n.allocated for n in nodes)
            if total <= 0:
                continue

            usage_pct = allocated / total * 100
            if usage_pct <= threshold:
                continue

            findings.append(Finding(
                message=(
                    f"{pool} usage is {usage_pct:.1f}% "
                    f"({allocated:g}/{total:g} allocated)"
                ),
                details={
                    "usage_percent": round(usage_pct, 2),
                    "allocated": allocated,
                    "total": total,
                    "threshold": threshold,
                    "node_count": len(nodes),
                },
                cluster=cluster.name,
                resource=pool,
                resource_kind="Resource",
            ))

        return findings

    def evaluated_clusters(self, rule: AlertRule, snapshot: FleetSnapshot) -> set[str | None]:
        # A cluster whose pool nodes went missing was not measured this pass.
        pool = rule.condition.resource or DEFAULT_RESOURCE_POOL
        return {
            cluster.name for cluster in snapshot.clusters
            if in_scope(cluster.name, rule.condition.clusters)
            and sum(
                n.capacity for n in snapshot.nodes
                if n.resource == pool and _node_in_cluster(n, cluster.name)
            ) > 0
        }
