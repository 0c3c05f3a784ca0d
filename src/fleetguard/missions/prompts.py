"""Jinja2 rendering for mission prompts."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, StrictUndefined

_TEMPLATES_DIR = Path(__file__).parent / "templates"

_env = Environment(  # nosec B701 - plain-text prompts, not HTML
    loader=FileSystemLoader(str(_TEMPLATES_DIR)),
    autoescape=False,
    undefined=StrictUndefined,
    keep_trailing_newline=False,
)


def _to_json(value: Any) -> str:
    return json.dumps(value, indent=2, default=str, sort_keys=True)


def render_alert_prompt(alert: Any) -> str:
    """Prompt asking the agent to diagnose a single alert."""
    return _env.get_template("diagnose_alert.j2").render(
        alert=alert,
        details_json=_to_json(alert.details),
    )


def render_diagnosis_prompt(
    *,
    monitor_type: str,
    resources: list[Any],
    issues: list[Any],
    context: dict[str, Any],
    repairable: bool,
    loop_count: int = 0,
    max_loops: int = 1,
) -> str:
    """Prompt opening a diagnose/repair session."""
    return _env.get_template("diagnose_workload.j2").render(
        monitor_type=monitor_type,
        resources=resources,
        issues=issues,
        context_json=_to_json(context),
        repairable=repairable,
        loop_count=loop_count,
        max_loops=max_loops,
    )


def render_repair_prompt(repairs: list[Any]) -> str:
    """Instruction listing every approved repair to execute."""
    return _env.get_template("execute_repairs.j2").render(repairs=repairs)
