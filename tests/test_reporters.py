"""Tests for output reporters."""

from __future__ import annotations

import io
import json

import pytest
from rich.console import Console

from fleetguard.models import AlertCondition, AlertRule, AlertStats
from fleetguard.repair.models import DiagnoseRepairPhase, DiagnoseRepairState, ProposedRepair, RepairRisk
from fleetguard.reporters import console as console_reporter
from fleetguard.reporters.json_reporter import (
    alerts_to_json,
    evaluation_to_json,
    rules_to_json,
    session_to_dict,
)


@pytest.fixture
def alerts(manager, fleet_snapshot):
    return manager.evaluate(fleet_snapshot)


@pytest.fixture
def captured(monkeypatch):
    """Redirect the module-level rich console into a buffer."""
    buffer = io.StringIO()
    monkeypatch.setattr(console_reporter, "console", Console(file=buffer, width=200, color_system=None))
    return buffer


class TestJsonReporter:
    def test_alerts_to_json(self, alerts):
        parsed = json.loads(alerts_to_json(alerts))
        assert len(parsed) == 3
        for field in ["id", "rule_id", "rule_name", "severity", "status", "message", "fired_at"]:
            assert field in parsed[0], f"Missing field: {field}"

    def test_alerts_to_json_empty(self):
        assert json.loads(alerts_to_json([])) == []

    def test_rules_to_json(self, rule_store):
        parsed = json.loads(rules_to_json(rule_store.list()))
        assert parsed[0]["condition"]["type"] == "resource_usage"

    def test_evaluation_to_json(self, alerts, manager):
        parsed = json.loads(evaluation_to_json(alerts, manager.stats()))
        assert len(parsed["firing"]) == 3
        assert parsed["stats"]["firing"] == 3

    def test_session_to_dict(self):
        data = session_to_dict("session-1", "Deployment", DiagnoseRepairState())
        assert data["session_id"] == "session-1"
        assert data["monitor_type"] == "Deployment"
        assert data["phase"] == "idle"


class TestConsoleReporter:
    def test_print_alerts(self, captured, alerts):
        console_reporter.print_alerts(alerts)
        output = captured.getvalue()
        assert "GPU Usage Critical" in output
        assert "93.8%" in output

    def test_print_alerts_empty(self, captured):
        console_reporter.print_alerts([])
        assert "No alerts" in captured.getvalue()

    def test_print_alert_detail(self, captured, alerts):
        console_reporter.print_alert_detail(alerts[0])
        output = captured.getvalue()
        assert alerts[0].id in output
        assert f"{alerts[0].severity.value.upper()}: {alerts[0].rule_name}" in output

    def test_print_stats(self, captured):
        console_reporter.print_stats(AlertStats(total=5, firing=2, critical=1, warning=1))
        assert "2 firing / 5 total" in captured.getvalue()

    def test_print_rules_shows_scope(self, captured):
        rule = AlertRule(
            name="Prod GPUs",
            condition=AlertCondition(type="resource_usage", threshold=80, clusters=["prod", "prod-eu"]),
        )
        console_reporter.print_rules([rule])
        assert "resource_usage > 80 (prod, prod-eu)" in captured.getvalue()

    def test_print_session(self, captured):
        state = DiagnoseRepairState(
            phase=DiagnoseRepairPhase.AWAITING_APPROVAL,
            proposed_repairs=[ProposedRepair(
                id="repair-0-ab", issue_id="issue-1", action="Restart Deployment",
                description="Address: API down - crash", risk=RepairRisk.MEDIUM, approved=True,
            )],
            mission_id="mission-1",
        )
        console_reporter.print_session("session-1", state)
        output = captured.getvalue()
        assert "awaiting-approval" in output
        assert "repair-0-ab" in output
        assert "Restart Deployment" in output
