"""Rich console reporter for alerts, rules and repair sessions."""

from __future__ import annotations

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from fleetguard.models import Alert, AlertRule, AlertSeverity, AlertStats
from fleetguard.repair.models import DiagnoseRepairPhase, DiagnoseRepairState, RepairRisk

console = Console()

_SEVERITY_COLOR: dict[AlertSeverity, str] = {
    AlertSeverity.CRITICAL: "red",
    AlertSeverity.WARNING: "yellow",
    AlertSeverity.INFO: "blue",
}

_SEVERITY_ORDER = {
    AlertSeverity.CRITICAL: 0,
    AlertSeverity.WARNING: 1,
    AlertSeverity.INFO: 2,
}

_RISK_COLOR: dict[RepairRisk, str] = {
    RepairRisk.LOW: "green",
    RepairRisk.MEDIUM: "yellow",
    RepairRisk.HIGH: "red",
}


def print_alerts(alerts: list[Alert], title: str = "Alerts") -> None:
    """Print alerts as a Rich table, firing first, then by severity."""
    if not alerts:
        console.print(Panel("[green]No alerts. The fleet looks healthy.[/]", title=title))
        return

    table = Table(title=title, show_header=True, header_style="bold", expand=True)
    table.add_column("ID", no_wrap=True)
    table.add_column("Sev", width=4, no_wrap=True)
    table.add_column("Status", no_wrap=True)
    table.add_column("Rule", min_width=16)
    table.add_column("Cluster", no_wrap=True)
    table.add_column("Resource")
    table.add_column("Message", min_width=30)

    ordered = sorted(
        alerts,
        key=lambda a: (not a.is_firing, _SEVERITY_ORDER.get(a.severity, 99)),
    )
    for alert in ordered:
        color = _SEVERITY_COLOR[alert.severity]
        status = alert.status.value
        if alert.is_firing and alert.acknowledged_at:
            status += " (ack)"
        table.add_row(
            alert.id,
            f"[{color}]{alert.severity.value[:1].upper()}[/]",
            status,
            escape(alert.rule_name),
            alert.cluster or "-",
            alert.resource or "-",
            escape(alert.message),
        )
    console.print(table)


def print_alert_detail(alert: Alert) -> None:
    color = _SEVERITY_COLOR[alert.severity]
    content = Text()
    content.append(f"{alert.message}\n\n")
    content.append(f"Cluster:  {alert.cluster or 'N/A'}\n")
    content.append(f"Resource: {alert.resource or 'N/A'}")
    if alert.resource_kind:
        content.append(f" ({alert.resource_kind})")
    content.append(f"\nFired:    {alert.fired_at.isoformat()}\n")
    if alert.resolved_at:
        content.append(f"Resolved: {alert.resolved_at.isoformat()}\n")
    if alert.acknowledged_at:
        content.append(f"Acked:    {alert.acknowledged_at.isoformat()} by {alert.acknowledged_by or '-'}\n")

    if alert.ai_diagnosis:
        content.append("\nAI Analysis\n", style="bold underline")
        content.append(f"{alert.ai_diagnosis.summary}\n")
        if alert.ai_diagnosis.root_cause:
            content.append(f"Root cause: {alert.ai_diagnosis.root_cause}\n")
        for i, suggestion in enumerate(alert.ai_diagnosis.suggestions, 1):
            content.append(f"  {i}. {suggestion}\n")

    console.print(Panel(
        content,
        title=f"[{color}]{alert.severity.value.upper()}: {escape(alert.rule_name)}[/]",
        subtitle=f"ID: {alert.id}  |  {alert.status.value}",
        border_style=color,
    ))


def print_stats(stats: AlertStats) -> None:
    console.print(
        f"[bold]{stats.firing} firing[/] / {stats.total} total  "
        f"([red]{stats.critical} critical[/]  [yellow]{stats.warning} warning[/]  "
        f"[blue]{stats.info} info[/]  {stats.acknowledged} acknowledged)"
    )


def print_rules(rules: list[AlertRule]) -> None:
    table = Table(title="Alert Rules", show_header=True, header_style="bold", expand=True)
    table.add_column("ID", no_wrap=True)
    table.add_column("On", width=3, no_wrap=True)
    table.add_column("Sev", no_wrap=True)
    table.add_column("Name", min_width=20)
    table.add_column("Condition")

    for rule in rules:
        color = _SEVERITY_COLOR[rule.severity]
        cond = rule.condition
        summary = cond.type
        if cond.threshold is not None:
            summary += f" > {cond.threshold:g}"
        if cond.clusters:
            summary += f" ({', '.join(cond.clusters)})"
        table.add_row(
            rule.id,
            "[green]Y[/]" if rule.enabled else "[dim]N[/]",
            f"[{color}]{rule.severity.value}[/]",
            escape(rule.name),
            summary,
        )
    console.print(table)


def print_session(session_id: str, state: DiagnoseRepairState) -> None:
    """Print a diagnose/repair session with its proposed repairs."""
    phase_color = {
        DiagnoseRepairPhase.COMPLETE: "green",
        DiagnoseRepairPhase.FAILED: "red",
    }.get(state.phase, "cyan")

    header = (
        f"Phase: [{phase_color}]{state.phase.value}[/]  |  "
        f"Loop {state.loop_count + 1}/{state.max_loops}  |  "
        f"Mission: {state.mission_id or '-'}"
    )
    console.print(Panel(header, title=f"Session {session_id}", border_style=phase_color))
    if state.error:
        print_error(state.error)

    if state.proposed_repairs:
        table = Table(show_header=True, header_style="bold", expand=True)
        table.add_column("Repair", no_wrap=True)
        table.add_column("Action")
        table.add_column("Risk", no_wrap=True)
        table.add_column("Approved", no_wrap=True)
        table.add_column("Done", no_wrap=True)
        done = set(state.completed_repairs)
        for repair in state.proposed_repairs:
            color = _RISK_COLOR[repair.risk]
            table.add_row(
                repair.id,
                escape(f"{repair.action}: {repair.description}"),
                f"[{color}]{repair.risk.value}[/]",
                "yes" if repair.approved else "no",
                "yes" if repair.id in done else "",
            )
        console.print(table)


def print_error(message: str) -> None:
    """Print an error message."""
    console.print(f"[red]Error:[/] {message}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green]{message}[/]")


def print_info(message: str) -> None:
    """Print an info message."""
    console.print(f"[dim]{message}[/]")
