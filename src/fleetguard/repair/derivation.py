"""Default repair proposals derived from detected issues.

Derivation is a pure function of the issue, so the same issue always yields
the same action, description and risk.
"""

from __future__ import annotations

import uuid

from fleetguard.repair.models import IssueSeverity, MonitorIssue, ProposedRepair, RepairRisk

# Controllers that can be restarted or scaled in place
_WORKLOAD_KINDS = {"Deployment", "StatefulSet", "DaemonSet"}

# Kinds whose repair touches replicated state
_ELEVATED_KINDS = {"Deployment", "StatefulSet"}

_FIXED_ACTIONS: dict[str, str] = {
    "Service": "Check endpoints",
    "PersistentVolumeClaim": "Investigate PVC",
}


def derive_action(issue: MonitorIssue) -> str:
    """Return the default repair action for *issue*.

    Args:
        issue: The detected issue.

    Returns:
        A short imperative such as ``"Restart Deployment"``.
    """
    kind = issue.resource.kind
    status = issue.resource.status

    if status == "missing":
        return f"Create {kind}"
    if kind in _WORKLOAD_KINDS:
        return f"Restart {kind}" if status == "unhealthy" else f"Scale {kind}"
    return _FIXED_ACTIONS.get(kind, f"Investigate {kind}")


def derive_description(issue: MonitorIssue) -> str:
    return f"Address: {issue.title} - {issue.description}"


def derive_risk(issue: MonitorIssue) -> RepairRisk:
    """Classify the risk of repairing *issue*.

    Critical issues and replicated controllers are medium risk; everything
    else is low.
    """
    if issue.severity == IssueSeverity.CRITICAL:
        return RepairRisk.MEDIUM
    if issue.resource.kind in _ELEVATED_KINDS:
        return RepairRisk.MEDIUM
    return RepairRisk.LOW


def propose_repairs(issues: list[MonitorIssue]) -> list[ProposedRepair]:
    """One unapproved repair per issue, in issue order."""
    batch = uuid.uuid4().hex[:8]
    return [
        ProposedRepair(
            id=f"repair-{idx}-{batch}",
            issue_id=issue.id,
            action=derive_action(issue),
            description=derive_description(issue),
            risk=derive_risk(issue),
            approved=False,
        )
        for idx, issue in enumerate(issues)
    ]
