"""Abstract base class for condition evaluators."""

from __future__ import annotations

from abc import ABC, abstractmethod

from fleetguard.models import AlertRule, Finding, FleetSnapshot


def in_scope(value: str | None, allow_list: list[str] | None) -> bool:
    """Return True if *value* passes an optional allow-list (empty means all)."""
    if not allow_list:
        return True
    return (value or "") in allow_list


class BaseEvaluator(ABC):
    """Checks one kind of rule condition against a fleet snapshot.

    Evaluators are pure: they never create or resolve alerts and never raise
    on missing data. Incomplete data (no nodes, zero capacity) produces no
    findings.
    """

    @property
    @abstractmethod
    def condition_types(self) -> tuple[str, ...]:
        """Condition type strings this evaluator handles."""
        ...

    @property
    def default_threshold(self) -> float | None:
        return None

    def threshold(self, rule: AlertRule) -> float | None:
        if rule.condition.threshold is not None:
            return rule.condition.threshold
        return self.default_threshold

    @abstractmethod
    def evaluate(self, rule: AlertRule, snapshot: FleetSnapshot) -> list[Finding]:
        """Return zero or more findings for *rule* against *snapshot*."""
        ...

    def evaluated_clusters(self, rule: AlertRule, snapshot: FleetSnapshot) -> set[str | None]:
        """Return the clusters *snapshot* actually let this evaluator judge.

        Only alerts inside this set may be auto-resolved when the condition
        no longer fires. The default covers in-scope clusters whose health
        is known; an unreachable cluster tells us nothing.
        """
        return {
            cluster.name for cluster in snapshot.clusters
            if in_scope(cluster.name, rule.condition.clusters) and cluster.healthy is not None
        }
