"""Condition evaluators, one per rule condition kind."""

from fleetguard.evaluators.base import BaseEvaluator, in_scope
from fleetguard.evaluators.crash_loop import CrashLoopEvaluator
from fleetguard.evaluators.node_ready import NodeNotReadyEvaluator
from fleetguard.evaluators.registry import EvaluatorRegistry
from fleetguard.evaluators.resource_usage import ResourceUsageEvaluator

ALL_EVALUATORS = [
    ResourceUsageEvaluator,
    NodeNotReadyEvaluator,
    CrashLoopEvaluator,
]


def default_registry() -> EvaluatorRegistry:
    """Registry holding one instance of every built-in evaluator."""
    return EvaluatorRegistry([cls() for cls in ALL_EVALUATORS])


__all__ = [
    "BaseEvaluator",
    "in_scope",
    "ResourceUsageEvaluator",
    "NodeNotReadyEvaluator",
    "CrashLoopEvaluator",
    "EvaluatorRegistry",
    "ALL_EVALUATORS",
    "default_registry",
]
