"""Data models for diagnose/repair sessions."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from fleetguard.models import new_id

DEFAULT_MAX_LOOPS = 3


class DiagnoseRepairPhase(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    DIAGNOSING = "diagnosing"
    PROPOSING_REPAIR = "proposing-repair"
    AWAITING_APPROVAL = "awaiting-approval"
    REPAIRING = "repairing"
    VERIFYING = "verifying"
    COMPLETE = "complete"
    FAILED = "failed"


class IssueSeverity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


class RepairRisk(str, Enum):
    """Risk of a proposed repair. HIGH is never assigned automatically."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class MonitoredResource(BaseModel):
    """A workload resource and its observed status."""

    kind: str
    name: str
    namespace: str | None = None
    status: str = "unknown"
    message: str | None = None


class IssueResource(BaseModel):
    """The resource an issue refers to."""

    kind: str
    name: str
    status: str = "unknown"
    message: str | None = None


class MonitorIssue(BaseModel):
    """A problem detected on a monitored workload."""

    id: str = Field(default_factory=lambda: new_id("issue"))
    severity: IssueSeverity = IssueSeverity.WARNING
    title: str
    description: str = ""
    resource: IssueResource


class ProposedRepair(BaseModel):
    id: str
    issue_id: str
    action: str
    description: str
    risk: RepairRisk
    approved: bool = False


class DiagnoseRepairState(BaseModel):
    """Snapshot of one diagnose/repair session.

    ``completed_repairs`` holds repair ids and only ever grows within a
    session; ``loop_count`` never exceeds ``max_loops``.
    """

    phase: DiagnoseRepairPhase = DiagnoseRepairPhase.IDLE
    issues_found: list[MonitorIssue] = Field(default_factory=list)
    proposed_repairs: list[ProposedRepair] = Field(default_factory=list)
    completed_repairs: list[str] = Field(default_factory=list)
    loop_count: int = 0
    max_loops: int = DEFAULT_MAX_LOOPS
    mission_id: str | None = None
    error: str | None = None
    analysis: str | None = None
