"""Core data models for rules, alerts and fleet snapshots."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    """Return a short random identifier such as ``alert-1f2e3d4c``."""
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


DEFAULT_RESOURCE_POOL = "nvidia.com/gpu"


class AlertSeverity(str, Enum):
    """Severity levels for rules and the alerts they raise."""

    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


class AlertStatus(str, Enum):
    """Alert lifecycle states. RESOLVED is terminal."""

    FIRING = "firing"
    RESOLVED = "resolved"


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

class AlertCondition(BaseModel):
    """What a rule checks for and where.

    Empty or missing ``clusters``/``namespaces`` means every cluster or namespace.
    """

    type: str
    threshold: float | None = None
    clusters: list[str] | None = None
    namespaces: list[str] | None = None
    resource: str | None = None


class AlertRule(BaseModel):
    """A named, enabled/disabled condition template."""

    id: str = Field(default_factory=lambda: new_id("rule"))
    name: str
    description: str = ""
    severity: AlertSeverity = AlertSeverity.WARNING
    enabled: bool = True
    condition: AlertCondition
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------

class AIDiagnosis(BaseModel):
    """AI analysis attached to an alert by a diagnosis mission."""

    summary: str
    root_cause: str = ""
    suggestions: list[str] = Field(default_factory=list)
    mission_id: str
    analyzed_at: datetime = Field(default_factory=_utcnow)


class Alert(BaseModel):
    """A concrete, deduplicated instance of a rule's condition."""

    id: str = Field(default_factory=lambda: new_id("alert"))
    rule_id: str
    rule_name: str
    severity: AlertSeverity
    status: AlertStatus = AlertStatus.FIRING
    message: str
    details: dict[str, Any] = Field(default_factory=dict)
    cluster: str | None = None
    namespace: str | None = None
    resource: str | None = None
    resource_kind: str | None = None
    fired_at: datetime = Field(default_factory=_utcnow)
    resolved_at: datetime | None = None
    acknowledged_at: datetime | None = None
    acknowledged_by: str | None = None
    ai_diagnosis: AIDiagnosis | None = None

    @property
    def dedup_key(self) -> tuple[str, str | None, str | None]:
        return (self.rule_id, self.cluster, self.resource)

    @property
    def is_firing(self) -> bool:
        return self.status == AlertStatus.FIRING


class AlertStats(BaseModel):
    """Alert counts. Severity and acknowledged counts cover firing alerts only."""

    total: int = 0
    firing: int = 0
    resolved: int = 0
    critical: int = 0
    warning: int = 0
    info: int = 0
    acknowledged: int = 0


# ---------------------------------------------------------------------------
# Snapshot data (read-only input from the cluster-introspection API)
# ---------------------------------------------------------------------------

class ClusterInfo(BaseModel):
    """Cluster-level summary."""

    name: str
    healthy: bool | None = None
    node_count: int = 0


class NodeCapacity(BaseModel):
    """Capacity and allocation of one resource pool on one node."""

    name: str
    cluster: str
    resource: str = DEFAULT_RESOURCE_POOL
    capacity: float = 0.0
    allocated: float = 0.0


class PodIssue(BaseModel):
    """A pod reported as unhealthy by the introspection API."""

    name: str
    namespace: str | None = None
    cluster: str | None = None
    restarts: int = 0
    status: str = ""
    reason: str | None = None


class FleetSnapshot(BaseModel):
    """Point-in-time view of the fleet, refreshed once per polling cycle."""

    clusters: list[ClusterInfo] = Field(default_factory=list)
    nodes: list[NodeCapacity] = Field(default_factory=list)
    pod_issues: list[PodIssue] = Field(default_factory=list)
    collected_at: datetime = Field(default_factory=_utcnow)


class Finding(BaseModel):
    """Transient evaluator output, before it becomes (or matches) an Alert."""

    message: str
    details: dict[str, Any] = Field(default_factory=dict)
    cluster: str | None = None
    namespace: str | None = None
    resource: str | None = None
    resource_kind: str | None = None

    @property
    def scope_key(self) -> tuple[str | None, str | None]:
        return (self.cluster, self.resource)
