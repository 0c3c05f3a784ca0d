"""Node readiness evaluator."""

from __future__ import annotations

from fleetguard.evaluators.base import BaseEvaluator, in_scope
from fleetguard.models import AlertRule, Finding, FleetSnapshot


class NodeNotReadyEvaluator(BaseEvaluator):
    """Fires for every in-scope cluster whose summary is flagged unhealthy.

    A cluster with unknown health (``healthy is None``) is not flagged, and
    its alerts are left untouched until its health is known again.
    """

    @property
    def condition_types(self) -> tuple[str, ...]:
        return ("node_not_ready",)

    def evaluate(self, rule: AlertRule, snapshot: FleetSnapshot) -> list[Finding]:
        return [
            Finding(
                message=f"Cluster {cluster.name} has nodes not in Ready state",
                details={
                    "cluster_healthy": cluster.healthy,
                    "node_count": cluster.node_count,
                },
                cluster=cluster.name,
                resource=cluster.name,
                resource_kind="Cluster",
            )
            for cluster in snapshot.clusters
            if in_scope(cluster.name, rule.condition.clusters) and cluster.healthy is False
        ]
