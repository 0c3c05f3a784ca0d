"""Tests for the evaluation scheduler and its circuit breaker."""

from __future__ import annotations

import time
from unittest.mock import MagicMock

import pytest

from fleetguard.collectors.base import BaseSnapshotSource, SnapshotError
from fleetguard.engine import CircuitBreaker, CircuitOpen, EvaluationScheduler
from fleetguard.models import AlertCondition


@pytest.fixture
def source(fleet_snapshot):
    src = MagicMock(spec=BaseSnapshotSource)
    src.name = "fake"
    src.collect.return_value = fleet_snapshot
    return src


@pytest.fixture
def scheduler(manager, source):
    return EvaluationScheduler(manager, source, interval=10, initial_delay=0, retry_multiplier=0)


def _wait_until(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


class TestCircuitBreaker:
    def test_opens_after_threshold(self):
        breaker = CircuitBreaker("test", failure_threshold=2, reset_timeout=60)
        failing = MagicMock(side_effect=RuntimeError("down"))
        for _ in range(2):
            with pytest.raises(RuntimeError):
                breaker.call(failing)
        assert breaker.state == CircuitBreaker.OPEN
        with pytest.raises(CircuitOpen):
            breaker.call(failing)
        assert failing.call_count == 2

    def test_half_open_trial(self):
        now = [0.0]
        breaker = CircuitBreaker("test", failure_threshold=1, reset_timeout=30, clock=lambda: now[0])
        with pytest.raises(RuntimeError):
            breaker.call(MagicMock(side_effect=RuntimeError("down")))
        assert breaker.state == CircuitBreaker.OPEN

        now[0] = 31.0
        assert breaker.call(lambda: "ok") == "ok"
        assert breaker.state == CircuitBreaker.CLOSED
        assert breaker.failures == 0

    def test_failed_trial_reopens(self):
        now = [0.0]
        breaker = CircuitBreaker("test", failure_threshold=3, reset_timeout=30, clock=lambda: now[0])
        for _ in range(3):
            with pytest.raises(RuntimeError):
                breaker.call(MagicMock(side_effect=RuntimeError("down")))
        now[0] = 40.0
        with pytest.raises(RuntimeError):
            breaker.call(MagicMock(side_effect=RuntimeError("still down")))
        assert breaker.state == CircuitBreaker.OPEN


class TestRunOnce:
    def test_evaluates_collected_snapshot(self, scheduler, manager):
        firing = scheduler.run_once()
        assert len(firing) == 3
        state = scheduler.get_state()
        assert state["runs"] == 1
        assert state["last_firing"] == 3
        assert state["last_error"] is None
        assert state["source"] == "fake"

    def test_retries_collection(self, scheduler, source, fleet_snapshot):
        source.collect.side_effect = [SnapshotError("blip"), fleet_snapshot]
        assert len(scheduler.run_once()) == 3
        assert source.collect.call_count == 2

    def test_failed_collection_resolves_nothing(self, scheduler, source, manager):
        scheduler.run_once()
        source.collect.side_effect = SnapshotError("cluster unreachable")

        assert scheduler.run_once() == []
        assert len(manager.active_alerts()) == 3
        assert source.collect.call_count == 1 + 3
        assert "cluster unreachable" in scheduler.get_state()["last_error"]

    def test_circuit_opens_after_repeated_failures(self, scheduler, source):
        source.collect.side_effect = SnapshotError("down")
        for _ in range(3):
            scheduler.run_once()
        assert scheduler.get_state()["circuit"] == CircuitBreaker.OPEN

        calls = source.collect.call_count
        assert scheduler.run_once() == []
        assert source.collect.call_count == calls
        assert "OPEN" in scheduler.get_state()["last_error"]


class TestSchedule:
    def test_interval_minimum(self, manager, source):
        with pytest.raises(ValueError):
            EvaluationScheduler(manager, source, interval=5)

    def test_set_interval(self, scheduler):
        scheduler.set_interval(60)
        assert scheduler.get_state()["interval"] == 60
        with pytest.raises(ValueError):
            scheduler.set_interval(9)

    def test_start_runs_first_evaluation(self, scheduler):
        scheduler.start()
        try:
            assert _wait_until(lambda: scheduler.get_state()["runs"] >= 1)
            assert scheduler.running
        finally:
            scheduler.stop()
        assert not scheduler.running

    def test_trigger_brings_evaluation_forward(self, manager, source):
        sched = EvaluationScheduler(manager, source, interval=10, initial_delay=60, retry_multiplier=0)
        sched.start()
        try:
            assert sched.get_state()["runs"] == 0
            sched.trigger(0)
            assert _wait_until(lambda: sched.get_state()["runs"] >= 1)
        finally:
            sched.stop()

    def test_rule_change_triggers_evaluation(self, manager, rule_store, source):
        sched = EvaluationScheduler(
            manager, source, interval=10, initial_delay=60,
            rule_store=rule_store, rule_change_delay=0, retry_multiplier=0,
        )
        sched.start()
        try:
            rule_store.create(name="Any crash", condition=AlertCondition(type="crash_loop", threshold=1))
            assert _wait_until(lambda: sched.get_state()["runs"] >= 1)
        finally:
            sched.stop()

    def test_rule_change_ignored_when_stopped(self, manager, rule_store, source):
        sched = EvaluationScheduler(manager, source, interval=10, rule_store=rule_store)
        rule_store.create(name="Any crash", condition=AlertCondition(type="crash_loop", threshold=1))
        assert sched.get_state()["next_run_in"] is None
        source.collect.assert_not_called()
