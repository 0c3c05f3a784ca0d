"""Tests for the Alert Lifecycle Manager."""

from __future__ import annotations

import threading
from unittest.mock import MagicMock

import pytest

from fleetguard.alerts.manager import AlertManager
from fleetguard.collectors.base import BaseSnapshotSource
from fleetguard.evaluators import EvaluatorRegistry, default_registry
from fleetguard.missions.base import BaseMissionRunner, MissionDispatchError, MissionResult
from fleetguard.models import (
    AlertSeverity,
    AlertStatus,
    ClusterInfo,
    FleetSnapshot,
    NodeCapacity,
    PodIssue,
)
from fleetguard.repair import SessionRegistry
from fleetguard.store import ALERTS_KEY, KeyValueStore


@pytest.fixture
def crash_manager(crash_only_store, kv, mission_runner):
    return AlertManager(crash_only_store, kv, mission_runner=mission_runner)


# ---------------------------------------------------------------------------
# Evaluation and deduplication
# ---------------------------------------------------------------------------

class TestEvaluate:
    def test_fixture_snapshot_fires_presets(self, manager, fleet_snapshot):
        firing = manager.evaluate(fleet_snapshot)
        assert sorted(a.rule_name for a in firing) == [
            "GPU Usage Critical", "Node Not Ready", "Pod Crash Loop",
        ]
        assert manager.stats().critical == 2

    def test_crash_loop_scenario(self, crash_manager, pod_snapshot):
        firing = crash_manager.evaluate(pod_snapshot(7))
        assert len(firing) == 1
        alert = firing[0]
        assert alert.resource == "p1"
        assert alert.severity == AlertSeverity.WARNING
        assert "restarted 7 times" in alert.message

        assert crash_manager.evaluate(pod_snapshot(2)) == []
        resolved = crash_manager.get(alert.id)
        assert resolved.status == AlertStatus.RESOLVED
        assert resolved.resolved_at is not None

    def test_repeated_violation_keeps_one_alert(self, crash_manager, pod_snapshot):
        first = crash_manager.evaluate(pod_snapshot(7))
        second = crash_manager.evaluate(pod_snapshot(9))
        assert [a.id for a in first] == [a.id for a in second]
        assert len(crash_manager.active_alerts()) == 1
        # Reuse keeps the message of the first detection
        assert "restarted 7 times" in second[0].message

    def test_redetection_after_resolve_creates_new_alert(self, crash_manager, pod_snapshot):
        first = crash_manager.evaluate(pod_snapshot(7))[0]
        crash_manager.evaluate(pod_snapshot(0))
        again = crash_manager.evaluate(pod_snapshot(8))[0]
        assert again.id != first.id
        assert crash_manager.get(first.id).status == AlertStatus.RESOLVED
        assert len(crash_manager.alerts()) == 2

    def test_same_pod_in_two_clusters_is_two_alerts(self, crash_manager, pod_snapshot):
        a = crash_manager.evaluate(pod_snapshot(7, cluster="c1"))
        b = crash_manager.evaluate(pod_snapshot(7, cluster="c2"))
        assert a[0].id != b[0].id
        # c1 was absent from the second snapshot, so its alert is left alone
        assert crash_manager.get(a[0].id).status == AlertStatus.FIRING

        both = FleetSnapshot(
            clusters=[ClusterInfo(name="c1", healthy=True), ClusterInfo(name="c2", healthy=True)],
            pod_issues=[PodIssue(name="p1", namespace="default", cluster="c2", restarts=7)],
        )
        assert [x.id for x in crash_manager.evaluate(both)] == [b[0].id]
        assert crash_manager.get(a[0].id).status == AlertStatus.RESOLVED

    def test_disabled_rule_is_not_evaluated(self, crash_only_store, crash_manager, pod_snapshot):
        rule = crash_only_store.list()[0]
        crash_manager.evaluate(pod_snapshot(7))
        crash_only_store.toggle(rule.id)
        assert crash_manager.evaluate(pod_snapshot(7)) == []
        # Alerts of a rule that was not evaluated are left firing
        assert len(crash_manager.active_alerts()) == 1

    def test_evaluator_error_is_isolated(self, crash_manager, pod_snapshot, kv, crash_only_store):
        crash_manager.evaluate(pod_snapshot(7))

        registry = EvaluatorRegistry()
        broken = MagicMock()
        broken.condition_types = ("crash_loop",)
        broken.evaluate.side_effect = RuntimeError("evaluator bug")
        registry.register(broken)
        failing_manager = AlertManager(crash_only_store, kv, registry=registry)

        assert failing_manager.evaluate(pod_snapshot(0)) == []
        assert len(failing_manager.active_alerts()) == 1

    def test_empty_snapshot_resolves_nothing(self, manager, fleet_snapshot):
        manager.evaluate(fleet_snapshot)
        assert manager.evaluate(FleetSnapshot()) == []
        assert len(manager.active_alerts()) == 3

    def test_missing_pool_nodes_keep_usage_alert_firing(self, manager, fleet_snapshot):
        gpu = next(a for a in manager.evaluate(fleet_snapshot) if a.rule_name == "GPU Usage Critical")
        without_nodes = fleet_snapshot.model_copy(update={"nodes": []})
        manager.evaluate(without_nodes)
        assert manager.get(gpu.id).status == AlertStatus.FIRING

    def test_pool_back_under_threshold_resolves_usage_alert(self, manager, fleet_snapshot):
        gpu = next(a for a in manager.evaluate(fleet_snapshot) if a.rule_name == "GPU Usage Critical")
        idle = fleet_snapshot.model_copy(update={"nodes": [
            NodeCapacity(name="gpu-node-1", cluster="prod", capacity=8, allocated=1),
        ]})
        manager.evaluate(idle)
        assert manager.get(gpu.id).status == AlertStatus.RESOLVED

    def test_unreachable_cluster_keeps_crash_loop_alert_firing(self, crash_manager, pod_snapshot):
        alert = crash_manager.evaluate(pod_snapshot(7))[0]
        unreachable = FleetSnapshot(clusters=[ClusterInfo(name="c1", healthy=None)])
        crash_manager.evaluate(unreachable)
        assert crash_manager.get(alert.id).status == AlertStatus.FIRING

    def test_reachable_cluster_without_the_pod_resolves_crash_loop(self, crash_manager, pod_snapshot):
        alert = crash_manager.evaluate(pod_snapshot(7))[0]
        crash_manager.evaluate(FleetSnapshot(clusters=[ClusterInfo(name="c1", healthy=True)]))
        assert crash_manager.get(alert.id).status == AlertStatus.RESOLVED

    def test_uses_snapshot_source(self, rule_store, kv, fleet_snapshot):
        source = MagicMock(spec=BaseSnapshotSource)
        source.collect.return_value = fleet_snapshot
        mgr = AlertManager(rule_store, kv, snapshot_source=source)
        assert len(mgr.evaluate()) == 3
        source.collect.assert_called_once()
        assert mgr.last_evaluated_at is not None

    def test_no_snapshot_and_no_source(self, manager):
        with pytest.raises(RuntimeError, match="snapshot source"):
            manager.evaluate()

    def test_concurrent_evaluation_is_skipped(self, rule_store, kv, fleet_snapshot):
        entered = threading.Event()
        release = threading.Event()
        registry = default_registry()
        real_evaluate = registry.evaluate

        def _slow_evaluate(rule, snapshot):
            entered.set()
            release.wait(5)
            return real_evaluate(rule, snapshot)

        registry.evaluate = _slow_evaluate
        mgr = AlertManager(rule_store, kv, registry=registry)
        worker = threading.Thread(target=mgr.evaluate, args=(fleet_snapshot,))
        worker.start()
        assert entered.wait(5)
        try:
            assert mgr.is_evaluating
            assert mgr.evaluate(fleet_snapshot) == []
        finally:
            release.set()
            worker.join(5)
        assert len(mgr.active_alerts()) == 3


# ---------------------------------------------------------------------------
# Direct mutations
# ---------------------------------------------------------------------------

class TestMutations:
    def test_create_or_reuse(self, manager, crash_rule):
        a = manager.create_or_reuse_alert(crash_rule, "first", cluster="c1", resource="p1")
        b = manager.create_or_reuse_alert(crash_rule, "second", cluster="c1", resource="p1")
        c = manager.create_or_reuse_alert(crash_rule, "other", cluster="c1", resource="p2")
        assert a.id == b.id != c.id
        assert b.message == "first"

    def test_namespace_not_part_of_identity(self, manager, crash_rule):
        a = manager.create_or_reuse_alert(crash_rule, "m", cluster="c1", namespace="a", resource="p1")
        b = manager.create_or_reuse_alert(crash_rule, "m", cluster="c1", namespace="b", resource="p1")
        assert a.id == b.id

    def test_newest_first(self, manager, crash_rule):
        manager.create_or_reuse_alert(crash_rule, "m", resource="p1")
        newer = manager.create_or_reuse_alert(crash_rule, "m", resource="p2")
        assert manager.alerts()[0].id == newer.id

    def test_acknowledge(self, manager, crash_rule):
        alert = manager.create_or_reuse_alert(crash_rule, "m", resource="p1")
        acked = manager.acknowledge(alert.id, by="oncall")
        assert acked.acknowledged_by == "oncall"
        assert acked.is_firing
        assert manager.stats().acknowledged == 1

    def test_acknowledged_alert_still_resolves(self, crash_manager, pod_snapshot):
        alert = crash_manager.evaluate(pod_snapshot(7))[0]
        crash_manager.acknowledge(alert.id)
        crash_manager.evaluate(pod_snapshot(0))
        assert crash_manager.get(alert.id).status == AlertStatus.RESOLVED

    def test_unknown_ids_are_noops(self, manager):
        assert manager.acknowledge("alert-missing") is None
        assert manager.resolve("alert-missing") is None
        assert manager.delete("alert-missing") is False

    def test_resolve_is_idempotent(self, manager, crash_rule):
        alert = manager.create_or_reuse_alert(crash_rule, "m", resource="p1")
        first = manager.resolve(alert.id)
        second = manager.resolve(alert.id)
        assert second.status == AlertStatus.RESOLVED
        assert second.resolved_at == first.resolved_at

    def test_delete(self, manager, crash_rule):
        alert = manager.create_or_reuse_alert(crash_rule, "m", resource="p1")
        assert manager.delete(alert.id) is True
        assert manager.get(alert.id) is None

    def test_returned_alerts_are_copies(self, manager, crash_rule):
        alert = manager.create_or_reuse_alert(crash_rule, "m", resource="p1")
        alert.message = "changed outside"
        assert manager.get(alert.id).message == "m"

    def test_stats(self, manager, fleet_snapshot):
        manager.evaluate(fleet_snapshot)
        firing = manager.active_alerts()
        manager.resolve(firing[0].id)
        stats = manager.stats()
        assert stats.total == 3
        assert stats.firing == 2
        assert stats.resolved == 1
        assert stats.critical + stats.warning + stats.info == 2


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

class TestPersistence:
    def test_alerts_survive_restart(self, rule_store, kv, fleet_snapshot):
        AlertManager(rule_store, kv).evaluate(fleet_snapshot)
        reloaded = AlertManager(rule_store, kv)
        assert len(reloaded.active_alerts()) == 3

    def test_reloaded_alerts_still_deduplicate(self, rule_store, kv, fleet_snapshot):
        AlertManager(rule_store, kv).evaluate(fleet_snapshot)
        reloaded = AlertManager(rule_store, kv)
        reloaded.evaluate(fleet_snapshot)
        assert len(reloaded.alerts()) == 3

    def test_corrupt_store_starts_empty(self, rule_store, kv):
        kv.save(ALERTS_KEY, {"not": "a list"})
        assert AlertManager(rule_store, kv).alerts() == []


class TestSharedStore:
    """Two managers on one database file, as with the CLI next to ``serve``."""

    @pytest.fixture
    def db_path(self, tmp_path):
        return str(tmp_path / "state.db")

    def test_writes_are_visible_to_the_other_manager(self, rule_store, db_path, fleet_snapshot):
        server = AlertManager(rule_store, KeyValueStore(db_path))
        cli = AlertManager(rule_store, KeyValueStore(db_path))
        server.evaluate(fleet_snapshot)

        alert = cli.active_alerts()[0]
        cli.acknowledge(alert.id, by="oncall")
        assert server.get(alert.id).acknowledged_by == "oncall"

    def test_diagnosis_started_elsewhere_completes_on_server(
        self, rule_store, db_path, crash_rule, mission_runner
    ):
        server = AlertManager(rule_store, KeyValueStore(db_path))
        alert = server.create_or_reuse_alert(crash_rule, "Pod p1 has restarted 7 times", resource="p1")
        registry = SessionRegistry(MagicMock(spec=BaseMissionRunner), alert_manager=server)

        cli = AlertManager(rule_store, KeyValueStore(db_path), mission_runner=mission_runner)
        mission_id = cli.run_ai_diagnosis(alert.id)

        # A server-side write after the diagnosis started must not drop it
        server.acknowledge(alert.id)
        assert server.get(alert.id).ai_diagnosis.mission_id == mission_id

        delivered = registry.deliver(MissionResult(mission_id=mission_id, summary="OOM killed"))
        assert delivered == "alert"
        assert cli.get(alert.id).ai_diagnosis.summary == "OOM killed"

    def test_missing_key_keeps_memory(self, rule_store, kv, crash_rule):
        mgr = AlertManager(rule_store, kv)
        alert = mgr.create_or_reuse_alert(crash_rule, "m", resource="p1")
        kv.delete(ALERTS_KEY)
        assert mgr.get(alert.id) is not None


# ---------------------------------------------------------------------------
# AI diagnosis
# ---------------------------------------------------------------------------

class TestAIDiagnosis:
    def test_starts_mission_and_records_placeholder(self, manager, crash_rule, mission_runner):
        alert = manager.create_or_reuse_alert(
            crash_rule, "Pod p1 has restarted 7 times", details={"restarts": 7},
            cluster="c1", resource="p1",
        )
        mission_id = manager.run_ai_diagnosis(alert.id)
        assert mission_id == "mission-0001"

        spec = mission_runner.start_mission.call_args.args[0]
        assert spec.type == "troubleshoot"
        assert spec.title == "Diagnose: Pod Crash Loop"
        assert "Pod p1 has restarted 7 times" in spec.initial_prompt
        assert "Severity: warning" in spec.initial_prompt
        assert '"restarts": 7' in spec.initial_prompt
        assert spec.context["alert_id"] == alert.id

        diagnosis = manager.get(alert.id).ai_diagnosis
        assert diagnosis.mission_id == "mission-0001"
        assert "in progress" in diagnosis.summary

    def test_unknown_alert(self, manager, mission_runner):
        assert manager.run_ai_diagnosis("alert-missing") is None
        mission_runner.start_mission.assert_not_called()

    def test_dispatch_failure_leaves_diagnosis_unset(self, manager, crash_rule, mission_runner):
        mission_runner.start_mission.side_effect = MissionDispatchError("runner down")
        alert = manager.create_or_reuse_alert(crash_rule, "m", resource="p1")
        with pytest.raises(MissionDispatchError):
            manager.run_ai_diagnosis(alert.id)
        assert manager.get(alert.id).ai_diagnosis is None

    def test_no_runner_configured(self, rule_store, kv, crash_rule):
        mgr = AlertManager(rule_store, kv)
        alert = mgr.create_or_reuse_alert(crash_rule, "m", resource="p1")
        with pytest.raises(MissionDispatchError, match="No mission runner"):
            mgr.run_ai_diagnosis(alert.id)

    def test_record_result(self, manager, crash_rule):
        alert = manager.create_or_reuse_alert(crash_rule, "m", resource="p1")
        manager.run_ai_diagnosis(alert.id)
        updated = manager.record_ai_diagnosis(
            "mission-0001", summary="OOM", root_cause="limit too low",
            suggestions=["Raise memory limit"],
        )
        assert updated.id == alert.id
        assert updated.ai_diagnosis.summary == "OOM"
        assert updated.ai_diagnosis.suggestions == ["Raise memory limit"]

    def test_record_result_unknown_mission(self, manager):
        assert manager.record_ai_diagnosis("mission-nope", summary="x") is None
