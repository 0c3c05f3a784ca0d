"""Diagnose-Repair Orchestrator."""

from fleetguard.repair.derivation import derive_action, derive_description, derive_risk, propose_repairs
from fleetguard.repair.loop import CANCELLED_ERROR, DiagnoseRepairLoop, PhaseError
from fleetguard.repair.models import (
    DEFAULT_MAX_LOOPS,
    DiagnoseRepairPhase,
    DiagnoseRepairState,
    IssueResource,
    IssueSeverity,
    MonitoredResource,
    MonitorIssue,
    ProposedRepair,
    RepairRisk,
)
from fleetguard.repair.sessions import SessionRegistry

__all__ = [
    "CANCELLED_ERROR",
    "DEFAULT_MAX_LOOPS",
    "DiagnoseRepairLoop",
    "DiagnoseRepairPhase",
    "DiagnoseRepairState",
    "IssueResource",
    "IssueSeverity",
    "MonitoredResource",
    "MonitorIssue",
    "PhaseError",
    "ProposedRepair",
    "RepairRisk",
    "SessionRegistry",
    "derive_action",
    "derive_description",
    "derive_risk",
    "propose_repairs",
]
