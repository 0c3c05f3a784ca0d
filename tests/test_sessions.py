"""Tests for the session registry and mission-result routing."""

from __future__ import annotations

import pytest

from fleetguard.missions.base import MissionResult
from fleetguard.repair import (
    DiagnoseRepairPhase as Phase,
    IssueResource,
    MonitorIssue,
    SessionRegistry,
)


@pytest.fixture
def registry(mission_runner, manager):
    return SessionRegistry(mission_runner, alert_manager=manager, max_loops=2)


@pytest.fixture
def issue():
    return MonitorIssue(
        title="Pods pending",
        resource=IssueResource(kind="Deployment", name="web", status="degraded"),
    )


class TestRegistry:
    def test_create_uses_defaults(self, registry):
        session = registry.create("Deployment")
        assert session.max_loops == 2
        assert session.repairable is True
        assert registry.get(session.session_id) is session

    def test_create_overrides(self, registry):
        session = registry.create("StatefulSet", repairable=False, max_loops=5)
        assert session.repairable is False
        assert session.max_loops == 5

    def test_sessions_are_independent(self, registry, issue):
        a = registry.create("Deployment")
        b = registry.create("Deployment")
        a.start_diagnose([], [issue])
        assert a.phase == Phase.DIAGNOSING
        assert b.phase == Phase.IDLE
        assert len(registry.list()) == 2

    def test_remove_cancels(self, registry, issue):
        session = registry.create("Deployment")
        session.start_diagnose([], [issue])
        assert registry.remove(session.session_id)
        assert session.phase == Phase.IDLE
        assert registry.get(session.session_id) is None
        assert not registry.remove(session.session_id)


class TestDeliver:
    def test_routes_to_owning_session(self, registry, mission_runner, issue):
        mission_runner.start_mission.side_effect = ["mission-a", "mission-b"]
        a = registry.create("Deployment")
        b = registry.create("Deployment")
        a.start_diagnose([], [issue])
        b.start_diagnose([], [issue])

        assert registry.deliver(MissionResult(mission_id="mission-b")) == "session"
        assert a.phase == Phase.DIAGNOSING
        assert b.phase == Phase.PROPOSING_REPAIR

    def test_session_not_waiting_returns_none(self, registry, issue):
        session = registry.create("Deployment")
        session.start_diagnose([], [issue])
        registry.deliver(MissionResult(mission_id="mission-0001"))
        assert registry.deliver(MissionResult(mission_id="mission-0001")) is None

    def test_routes_to_alert_diagnosis(self, registry, manager, crash_rule):
        alert = manager.create_or_reuse_alert(crash_rule, "m", resource="p1")
        manager.run_ai_diagnosis(alert.id)

        routed = registry.deliver(MissionResult(
            mission_id="mission-0001",
            summary="Image pull failing",
            root_cause="Wrong tag",
            suggestions=["Fix the tag"],
        ))
        assert routed == "alert"
        diagnosis = manager.get(alert.id).ai_diagnosis
        assert diagnosis.summary == "Image pull failing"
        assert diagnosis.root_cause == "Wrong tag"

    def test_failed_alert_diagnosis(self, registry, manager, crash_rule):
        alert = manager.create_or_reuse_alert(crash_rule, "m", resource="p1")
        manager.run_ai_diagnosis(alert.id)
        registry.deliver(MissionResult(mission_id="mission-0001", success=False, error="timeout"))
        assert manager.get(alert.id).ai_diagnosis.summary == "AI analysis failed: timeout"

    def test_output_used_when_no_summary(self, registry, manager, crash_rule):
        alert = manager.create_or_reuse_alert(crash_rule, "m", resource="p1")
        manager.run_ai_diagnosis(alert.id)
        registry.deliver(MissionResult(mission_id="mission-0001", output="raw agent text"))
        assert manager.get(alert.id).ai_diagnosis.summary == "raw agent text"

    def test_unknown_mission(self, registry):
        assert registry.deliver(MissionResult(mission_id="mission-nobody")) is None


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestRetention:
    @pytest.fixture
    def clock(self):
        return _Clock()

    @pytest.fixture
    def retaining(self, mission_runner, manager, clock):
        return SessionRegistry(mission_runner, alert_manager=manager, retention=60, clock=clock)

    def test_finished_session_is_evicted_after_retention(self, retaining, clock, issue):
        session = retaining.create("Deployment")
        session.start_diagnose([], [issue])
        session.cancel()
        assert retaining.get(session.session_id) is session

        clock.advance(59)
        assert session in retaining.list()
        clock.advance(1)
        assert retaining.get(session.session_id) is None
        assert retaining.list() == []

    def test_active_session_is_kept(self, retaining, clock, issue):
        session = retaining.create("Deployment")
        session.start_diagnose([], [issue])
        clock.advance(3600)
        assert retaining.get(session.session_id) is session

    def test_restarted_session_resets_the_clock(self, retaining, clock, issue):
        session = retaining.create("Deployment")
        session.cancel()
        retaining.list()
        clock.advance(30)
        session.start_diagnose([], [issue])
        retaining.list()
        session.cancel()
        clock.advance(59)
        assert retaining.get(session.session_id) is session

    def test_no_retention_keeps_everything(self, mission_runner, clock):
        registry = SessionRegistry(mission_runner, retention=None, clock=clock)
        session = registry.create("Deployment")
        session.cancel()
        registry.list()
        clock.advance(10 ** 6)
        assert registry.get(session.session_id) is session
