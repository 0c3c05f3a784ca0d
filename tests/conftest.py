"""Shared pytest fixtures for fleetguard tests."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from fleetguard.alerts.manager import AlertManager
from fleetguard.missions.base import BaseMissionRunner
from fleetguard.models import (
    AlertCondition,
    AlertRule,
    AlertSeverity,
    ClusterInfo,
    FleetSnapshot,
    PodIssue,
)
from fleetguard.rules.store import RuleStore
from fleetguard.store import KeyValueStore

FIXTURES_DIR = Path(__file__).parent / "fixtures"


@pytest.fixture
def snapshot_path():
    return FIXTURES_DIR / "fleet_snapshot.json"


@pytest.fixture
def snapshot_data(snapshot_path):
    """Raw fleet snapshot document: prod GPUs at 93.75%, staging unhealthy, p1 crash-looping."""
    with open(snapshot_path) as f:
        return json.load(f)


@pytest.fixture
def fleet_snapshot(snapshot_data):
    return FleetSnapshot.model_validate(snapshot_data)


@pytest.fixture
def kv():
    """In-memory SQLite store, discarded after each test."""
    return KeyValueStore(db_path=":memory:")


@pytest.fixture
def rule_store(kv):
    return RuleStore(kv)


@pytest.fixture
def mission_runner():
    runner = MagicMock(spec=BaseMissionRunner)
    runner.start_mission.return_value = "mission-0001"
    return runner


@pytest.fixture
def manager(rule_store, kv, mission_runner):
    return AlertManager(rule_store, kv, mission_runner=mission_runner)


@pytest.fixture
def crash_rule():
    return AlertRule(
        name="Pod Crash Loop",
        severity=AlertSeverity.WARNING,
        condition=AlertCondition(type="crash_loop", threshold=5),
    )


@pytest.fixture
def crash_only_store(kv, crash_rule):
    """Rule store holding just the crash-loop rule."""
    store = RuleStore(kv)
    for rule in store.list():
        store.delete(rule.id)
    store.create(
        name=crash_rule.name,
        condition=crash_rule.condition,
        severity=crash_rule.severity,
    )
    return store


@pytest.fixture
def pod_snapshot():
    """Factory: single-cluster snapshot with one pod at *restarts* restarts."""

    def _make(restarts: int, name: str = "p1", cluster: str = "c1") -> FleetSnapshot:
        return FleetSnapshot(
            clusters=[ClusterInfo(name=cluster, healthy=True, node_count=1)],
            pod_issues=[
                PodIssue(
                    name=name,
                    namespace="default",
                    cluster=cluster,
                    restarts=restarts,
                    status="CrashLoopBackOff",
                )
            ],
        )

    return _make


@pytest.fixture
def default_config():
    """Default configuration dict for testing."""
    from fleetguard.config import load_config
    return load_config(config_path="/nonexistent/fleetguard.yaml")
