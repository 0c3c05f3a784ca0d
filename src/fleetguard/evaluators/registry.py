"""Condition type -> evaluator lookup."""

from __future__ import annotations

import logging

from fleetguard.evaluators.base import BaseEvaluator
from fleetguard.models import AlertRule, Finding, FleetSnapshot

logger = logging.getLogger("fleetguard.evaluators")


class EvaluatorRegistry:
    """Maps condition type strings to evaluators.

    New condition kinds are added with :meth:`register`; nothing else needs to
    change. Rules whose type has no evaluator produce no findings.
    """

    def __init__(self, evaluators: list[BaseEvaluator] | None = None) -> None:
        self._by_type: dict[str, BaseEvaluator] = {}
        for evaluator in evaluators or []:
            self.register(evaluator)

    def register(self, evaluator: BaseEvaluator) -> None:
        for condition_type in evaluator.condition_types:
            if condition_type in self._by_type:
                logger.debug("Replacing evaluator for condition type %s", condition_type)
            self._by_type[condition_type] = evaluator

    def get(self, condition_type: str) -> BaseEvaluator | None:
        return self._by_type.get(condition_type)

    @property
    def condition_types(self) -> list[str]:
        return sorted(self._by_type)

    def evaluate(self, rule: AlertRule, snapshot: FleetSnapshot) -> list[Finding]:
        evaluator = self.get(rule.condition.type)
        if evaluator is None:
            logger.debug(
                "No evaluator for condition type %s", rule.condition.type,
                extra={"rule_id": rule.id},
            )
            return []
        return evaluator.evaluate(rule, snapshot)

    def evaluated_clusters(self, rule: AlertRule, snapshot: FleetSnapshot) -> set[str | None]:
        """Clusters whose alerts for *rule* may be resolved after this pass."""
        evaluator = self.get(rule.condition.type)
        if evaluator is None:
            return set()
        return evaluator.evaluated_clusters(rule, snapshot)
