"""JSON reporter for alerts, rules and sessions."""

from __future__ import annotations

import json
from typing import Any

from fleetguard.models import Alert, AlertRule, AlertStats
from fleetguard.repair.models import DiagnoseRepairState


def alerts_to_json(alerts: list[Alert], indent: int = 2) -> str:
    """Serialize alerts to a JSON array."""
    return json.dumps([a.model_dump(mode="json") for a in alerts], indent=indent)


def rules_to_json(rules: list[AlertRule], indent: int = 2) -> str:
    return json.dumps([r.model_dump(mode="json") for r in rules], indent=indent)


def session_to_dict(session_id: str, monitor_type: str, state: DiagnoseRepairState) -> dict[str, Any]:
    data = state.model_dump(mode="json")
    data["session_id"] = session_id
    data["monitor_type"] = monitor_type
    return data


def evaluation_to_json(firing: list[Alert], stats: AlertStats, indent: int = 2) -> str:
    """Serialize one evaluation pass: the firing alerts plus overall counts."""
    data = {
        "firing": [a.model_dump(mode="json") for a in firing],
        "stats": stats.model_dump(mode="json"),
    }
    return json.dumps(data, indent=indent)
