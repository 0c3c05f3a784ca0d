"""Periodic evaluation engine."""

from fleetguard.engine.breaker import CircuitBreaker, CircuitOpen
from fleetguard.engine.scheduler import MIN_INTERVAL, EvaluationScheduler

__all__ = ["CircuitBreaker", "CircuitOpen", "EvaluationScheduler", "MIN_INTERVAL"]
