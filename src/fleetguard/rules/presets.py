"""Built-in rules seeded on first run."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from fleetguard.models import AlertCondition, AlertRule, AlertSeverity

PRESET_RULES: list[dict[str, Any]] = [
    {
        "name": "GPU Usage Critical",
        "description": "GPU allocation across a cluster is above 90%.",
        "severity": AlertSeverity.CRITICAL,
        "enabled": True,
        "condition": {"type": "resource_usage", "threshold": 90, "resource": "nvidia.com/gpu"},
    },
    {
        "name": "GPU Usage Warning",
        "description": "GPU allocation across a cluster is above 75%.",
        "severity": AlertSeverity.WARNING,
        "enabled": False,
        "condition": {"type": "resource_usage", "threshold": 75, "resource": "nvidia.com/gpu"},
    },
    {
        "name": "Node Not Ready",
        "description": "A cluster reports nodes outside the Ready state.",
        "severity": AlertSeverity.CRITICAL,
        "enabled": True,
        "condition": {"type": "node_not_ready"},
    },
    {
        "name": "Pod Crash Loop",
        "description": "A pod has restarted 5 or more times.",
        "severity": AlertSeverity.WARNING,
        "enabled": True,
        "condition": {"type": "crash_loop", "threshold": 5},
    },
]


def build_preset_rules() -> list[AlertRule]:
    """Instantiate the presets with fresh ids and a shared creation time."""
    now = datetime.now(timezone.utc)
    return [
        AlertRule(
            name=preset["name"],
            description=preset["description"],
            severity=preset["severity"],
            enabled=preset["enabled"],
            condition=AlertCondition(**preset["condition"]),
            created_at=now,
            updated_at=now,
        )
        for preset in PRESET_RULES
    ]
