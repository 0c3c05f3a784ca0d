"""CLI entry point for fleetguard."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

import click

from fleetguard import __version__
from fleetguard.config import (
    DEFAULT_CONFIG_PATH,
    generate_default_yaml,
    load_config,
)
from fleetguard.logging_config import setup_logging


@click.group()
@click.version_option(__version__, prog_name="fleetguard")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=False),
    default=None,
    help="Path to config file (default: ~/.fleetguard/config.yaml)",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Logging verbosity",
)
@click.pass_context
def cli(ctx: click.Context, config: str | None, log_level: str | None) -> None:
    """fleetguard: alerting and AI diagnose/repair for Kubernetes fleets.

    Evaluates alert rules against cluster snapshots, keeps deduplicated
    alerts, and drives diagnose/repair missions with human approval.

    Quick start:
      fleetguard config init
      fleetguard evaluate --snapshot fleet.json
      fleetguard serve
    """
    ctx.ensure_object(dict)
    cfg = load_config(config)
    if log_level:
        cfg["logging"]["level"] = log_level
    setup_logging(cfg["logging"]["level"], cfg["logging"].get("file"))
    ctx.obj["config"] = cfg


# ---------------------------------------------------------------------------
# evaluate command
# ---------------------------------------------------------------------------

@cli.command()
@click.option(
    "--snapshot",
    "-f",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Evaluate a JSON fleet snapshot instead of live clusters",
)
@click.option(
    "--output",
    "-o",
    type=click.Choice(["console", "json"], case_sensitive=False),
    default="console",
    help="Output format",
)
@click.pass_context
def evaluate(ctx: click.Context, snapshot: str | None, output: str) -> None:
    """Evaluate every enabled rule once and update alerts.

    New violations fire alerts, violations that cleared are resolved, and
    ongoing ones keep their existing alert.

    Examples:
      fleetguard evaluate
      fleetguard evaluate --snapshot fleet.json --output json
    """
    from fleetguard.collectors.base import SnapshotError
    from fleetguard.reporters import evaluation_to_json, print_alerts, print_stats

    cfg = ctx.obj["config"]
    source = _build_source(cfg, snapshot)
    manager = _build_manager(cfg, source=source)

    try:
        firing = manager.evaluate()
    except SnapshotError as e:
        click.echo(f"Evaluation failed: {e}", err=True)
        sys.exit(1)

    if output == "json":
        click.echo(evaluation_to_json(firing, manager.stats()))
    else:
        print_alerts(firing, title="Firing Alerts")
        print_stats(manager.stats())


# ---------------------------------------------------------------------------
# alerts command group
# ---------------------------------------------------------------------------

@cli.group()
def alerts() -> None:
    """Inspect and manage alerts."""
    pass


@alerts.command("list")
@click.option(
    "--status",
    type=click.Choice(["firing", "resolved"], case_sensitive=False),
    default=None,
    help="Only show alerts in this state",
)
@click.option(
    "--output",
    "-o",
    type=click.Choice(["console", "json"], case_sensitive=False),
    default="console",
)
@click.pass_context
def alerts_list(ctx: click.Context, status: str | None, output: str) -> None:
    """List stored alerts, newest first."""
    from fleetguard.reporters import alerts_to_json, print_alerts, print_stats

    manager = _build_manager(ctx.obj["config"])
    items = manager.alerts(status.lower() if status else None)
    if output == "json":
        click.echo(alerts_to_json(items))
    else:
        print_alerts(items)
        print_stats(manager.stats())


@alerts.command("show")
@click.argument("alert_id")
@click.pass_context
def alerts_show(ctx: click.Context, alert_id: str) -> None:
    """Show one alert with its AI analysis."""
    from fleetguard.reporters import print_alert_detail

    alert = _build_manager(ctx.obj["config"]).get(alert_id)
    if alert is None:
        _not_found("Alert", alert_id)
    print_alert_detail(alert)


@alerts.command("ack")
@click.argument("alert_id")
@click.option("--by", default=None, help="Who is acknowledging")
@click.pass_context
def alerts_ack(ctx: click.Context, alert_id: str, by: str | None) -> None:
    """Acknowledge an alert."""
    from fleetguard.reporters import print_success

    if _build_manager(ctx.obj["config"]).acknowledge(alert_id, by=by) is None:
        _not_found("Alert", alert_id)
    print_success(f"Alert {alert_id} acknowledged.")


@alerts.command("resolve")
@click.argument("alert_id")
@click.pass_context
def alerts_resolve(ctx: click.Context, alert_id: str) -> None:
    """Resolve an alert by hand."""
    from fleetguard.reporters import print_success

    if _build_manager(ctx.obj["config"]).resolve(alert_id) is None:
        _not_found("Alert", alert_id)
    print_success(f"Alert {alert_id} resolved.")


@alerts.command("delete")
@click.argument("alert_id")
@click.pass_context
def alerts_delete(ctx: click.Context, alert_id: str) -> None:
    """Delete an alert."""
    from fleetguard.reporters import print_success

    if not _build_manager(ctx.obj["config"]).delete(alert_id):
        _not_found("Alert", alert_id)
    print_success(f"Alert {alert_id} deleted.")


@alerts.command("diagnose")
@click.argument("alert_id")
@click.pass_context
def alerts_diagnose(ctx: click.Context, alert_id: str) -> None:
    """Start an AI diagnosis mission for an alert.

    The analysis is attached to the alert when the mission runner reports
    completion to a running `fleetguard serve`.
    """
    from fleetguard.missions.base import MissionDispatchError
    from fleetguard.reporters import print_success

    cfg = ctx.obj["config"]
    manager = _build_manager(cfg, runner=_build_runner(cfg))
    try:
        mission_id = manager.run_ai_diagnosis(alert_id)
    except MissionDispatchError as e:
        click.echo(f"Diagnosis failed: {e}", err=True)
        sys.exit(1)
    if mission_id is None:
        _not_found("Alert", alert_id)
    print_success(f"Diagnosis mission {mission_id} started for alert {alert_id}.")


# ---------------------------------------------------------------------------
# rules command group
# ---------------------------------------------------------------------------

@cli.group()
def rules() -> None:
    """Inspect and manage alert rules."""
    pass


@rules.command("list")
@click.option(
    "--output",
    "-o",
    type=click.Choice(["console", "json"], case_sensitive=False),
    default="console",
)
@click.pass_context
def rules_list(ctx: click.Context, output: str) -> None:
    """List alert rules."""
    from fleetguard.reporters import print_rules, rules_to_json

    items = _build_rule_store(ctx.obj["config"]).list()
    if output == "json":
        click.echo(rules_to_json(items))
    else:
        print_rules(items)


@rules.command("toggle")
@click.argument("rule_id")
@click.pass_context
def rules_toggle(ctx: click.Context, rule_id: str) -> None:
    """Enable a disabled rule or disable an enabled one."""
    from fleetguard.reporters import print_success

    rule = _build_rule_store(ctx.obj["config"]).toggle(rule_id)
    if rule is None:
        _not_found("Rule", rule_id)
    print_success(f"Rule '{rule.name}' is now {'enabled' if rule.enabled else 'disabled'}.")


@rules.command("delete")
@click.argument("rule_id")
@click.pass_context
def rules_delete(ctx: click.Context, rule_id: str) -> None:
    """Delete a rule. Its existing alerts are kept."""
    from fleetguard.reporters import print_success

    if not _build_rule_store(ctx.obj["config"]).delete(rule_id):
        _not_found("Rule", rule_id)
    print_success(f"Rule {rule_id} deleted.")


# ---------------------------------------------------------------------------
# sessions command group (client of a running `fleetguard serve`)
# ---------------------------------------------------------------------------

@cli.group()
@click.option(
    "--server",
    default=None,
    help="fleetguard server URL (default: http://<serve.host>:<serve.port>)",
)
@click.pass_context
def sessions(ctx: click.Context, server: str | None) -> None:
    """Review and approve diagnose/repair sessions on a running server."""
    serve_cfg = ctx.obj["config"]["serve"]
    ctx.obj["server"] = (server or f"http://{serve_cfg['host']}:{serve_cfg['port']}").rstrip("/")


@sessions.command("list")
@click.pass_context
def sessions_list(ctx: click.Context) -> None:
    """List live sessions."""
    from fleetguard.reporters import print_info, print_session
    from fleetguard.repair.models import DiagnoseRepairState

    data = _server_request(ctx, "GET", "/api/sessions")
    if not data["sessions"]:
        print_info("No diagnose/repair sessions.")
        return
    for item in data["sessions"]:
        print_session(item["session_id"], DiagnoseRepairState.model_validate(item))


@sessions.command("show")
@click.argument("session_id")
@click.pass_context
def sessions_show(ctx: click.Context, session_id: str) -> None:
    """Show one session with its proposed repairs."""
    from fleetguard.reporters import print_session
    from fleetguard.repair.models import DiagnoseRepairState

    item = _server_request(ctx, "GET", f"/api/sessions/{session_id}")
    print_session(session_id, DiagnoseRepairState.model_validate(item))


@sessions.command("approve")
@click.argument("session_id")
@click.argument("repair_ids", nargs=-1)
@click.option("--all", "approve_all", is_flag=True, help="Approve every proposed repair")
@click.pass_context
def sessions_approve(
    ctx: click.Context, session_id: str, repair_ids: tuple[str, ...], approve_all: bool
) -> None:
    """Approve proposed repairs by id, or all of them with --all.

    Example:
      fleetguard sessions approve session-1a2b repair-0-9f8e7d6c
    """
    from fleetguard.reporters import print_success

    if approve_all:
        _server_request(ctx, "POST", f"/api/sessions/{session_id}/approve-all")
        print_success(f"All repairs approved for session {session_id}.")
        return
    if not repair_ids:
        raise click.UsageError("Give at least one REPAIR_ID or use --all.")
    for repair_id in repair_ids:
        _server_request(ctx, "POST", f"/api/sessions/{session_id}/approve", {"repair_id": repair_id})
        print_success(f"Repair {repair_id} approved.")


@sessions.command("execute")
@click.argument("session_id")
@click.pass_context
def sessions_execute(ctx: click.Context, session_id: str) -> None:
    """Send the approved repairs to the session's mission."""
    from fleetguard.reporters import print_info, print_success

    data = _server_request(ctx, "POST", f"/api/sessions/{session_id}/execute")
    if data["executed"]:
        print_success(f"Executing {len(data['executed'])} repair(s).")
    else:
        print_info("No approved repairs to execute.")


# ---------------------------------------------------------------------------
# serve command
# ---------------------------------------------------------------------------

@cli.command()
@click.option("--host", default=None, help="Bind address (default from config)")
@click.option("--port", type=int, default=None, help="Port (default from config)")
@click.option(
    "--snapshot",
    "-f",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Poll a JSON fleet snapshot file instead of live clusters",
)
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None, snapshot: str | None) -> None:
    """Run the evaluation loop and the HTTP API.

    Example:
      fleetguard serve --port 8686
    """
    import uvicorn

    from fleetguard.engine.scheduler import EvaluationScheduler
    from fleetguard.notifications import SlackNotifier, WebhookStore
    from fleetguard.repair.sessions import SessionRegistry
    from fleetguard.web.api import create_app

    cfg = ctx.obj["config"]
    serve_cfg = cfg["serve"]
    alerts_cfg = cfg["alerts"]
    repair_cfg = cfg["repair"]
    notify_cfg = cfg["notifications"]

    kv = _build_kv(cfg)
    rule_store = _build_rule_store(cfg, kv)
    source = _build_source(cfg, snapshot)
    runner = _build_runner(cfg)
    manager = _build_manager(cfg, source=source, runner=runner, kv=kv, rule_store=rule_store)

    try:
        scheduler = EvaluationScheduler(
            manager,
            source,
            interval=int(alerts_cfg["evaluation_interval"]),
            initial_delay=float(alerts_cfg["initial_delay"]),
            rule_store=rule_store,
            rule_change_delay=float(alerts_cfg["rule_change_delay"]),
        )
    except ValueError as e:
        click.echo(f"Invalid configuration: {e}", err=True)
        sys.exit(1)

    sessions = SessionRegistry(
        runner,
        alert_manager=manager,
        max_loops=int(repair_cfg["max_loops"]),
        repairable=bool(repair_cfg["repairable"]),
        retention=float(repair_cfg["session_retention"]) or None,
    )
    notifier = SlackNotifier(
        timeout=notify_cfg["timeout"],
        retry_attempts=notify_cfg["retry_attempts"],
    )
    app = create_app(
        manager,
        rule_store,
        sessions,
        WebhookStore(kv),
        notifier=notifier,
        scheduler=scheduler,
        cfg=cfg,
    )

    bind_host = host or serve_cfg["host"]
    bind_port = port or serve_cfg["port"]
    click.echo(f"fleetguard listening on http://{bind_host}:{bind_port}", err=True)

    scheduler.start()
    try:
        uvicorn.run(app, host=bind_host, port=bind_port, log_level="warning")
    finally:
        scheduler.stop()
        runner.close()


# ---------------------------------------------------------------------------
# config command group
# ---------------------------------------------------------------------------

@cli.group()
def config() -> None:
    """Manage fleetguard configuration."""
    pass


@config.command("init")
@click.option(
    "--path",
    type=click.Path(),
    default=None,
    help=f"Where to create the config (default: {DEFAULT_CONFIG_PATH})",
)
@click.option("--force", is_flag=True, help="Overwrite existing config")
def config_init(path: str | None, force: bool) -> None:
    """Create a default configuration file.

    Example:
      fleetguard config init
      fleetguard config init --path ./fleetguard.yaml
    """
    target = Path(path) if path else DEFAULT_CONFIG_PATH

    if target.exists() and not force:
        click.echo(f"Config already exists at {target}. Use --force to overwrite.", err=True)
        sys.exit(1)

    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(generate_default_yaml(), encoding="utf-8")
    click.echo(f"Config created at: {target}")
    click.echo("Edit it to point at your mission runner and clusters.")


@config.command("show")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Show current effective configuration."""
    import yaml

    display = _mask_secrets(ctx.obj["config"])
    click.echo(yaml.dump(display, default_flow_style=False, sort_keys=False))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _build_kv(cfg: dict[str, Any]) -> Any:
    from fleetguard.store import KeyValueStore

    return KeyValueStore(cfg["store"]["path"])


def _build_rule_store(cfg: dict[str, Any], kv: Any = None) -> Any:
    from fleetguard.rules.store import RuleStore

    return RuleStore(kv or _build_kv(cfg))


def _build_manager(
    cfg: dict[str, Any],
    source: Any = None,
    runner: Any = None,
    kv: Any = None,
    rule_store: Any = None,
) -> Any:
    from fleetguard.alerts.manager import AlertManager

    kv = kv or _build_kv(cfg)
    return AlertManager(
        rule_store or _build_rule_store(cfg, kv),
        kv,
        snapshot_source=source,
        mission_runner=runner,
    )


def _build_source(cfg: dict[str, Any], snapshot: str | None) -> Any:
    """Snapshot file when given, otherwise the Kubernetes collector."""
    from fleetguard.collectors import FileSnapshotSource, KubernetesSnapshotSource

    if snapshot:
        return FileSnapshotSource(snapshot)

    k8s_cfg = cfg["collectors"]["kubernetes"]
    if not k8s_cfg.get("enabled", True):
        click.echo("Kubernetes collector is disabled; pass --snapshot FILE.", err=True)
        sys.exit(1)
    return KubernetesSnapshotSource(config=k8s_cfg)


def _build_runner(cfg: dict[str, Any]) -> Any:
    from fleetguard.missions import HttpMissionRunner

    missions_cfg = cfg["missions"]
    try:
        return HttpMissionRunner(
            base_url=missions_cfg["base_url"],
            token_env=missions_cfg.get("token_env"),
            timeout=float(missions_cfg.get("timeout", 15)),
        )
    except ValueError as e:
        click.echo(f"Invalid mission runner configuration: {e}", err=True)
        sys.exit(1)


def _server_request(
    ctx: click.Context, method: str, path: str, body: dict[str, Any] | None = None
) -> Any:
    """Call the fleetguard HTTP API; exits 1 with the server's detail on failure."""
    import httpx

    from fleetguard.reporters import print_error

    server = ctx.obj["server"]
    try:
        response = httpx.request(method, f"{server}{path}", json=body, timeout=15.0)
    except httpx.HTTPError as e:
        print_error(f"Cannot reach fleetguard server at {server}: {e}")
        sys.exit(1)
    if response.status_code >= 400:
        try:
            detail = response.json().get("detail", response.text)
        except ValueError:
            detail = response.text
        print_error(f"HTTP {response.status_code}: {detail}")
        sys.exit(1)
    return response.json()


def _not_found(kind: str, item_id: str) -> None:
    click.echo(f"{kind} {item_id} not found.", err=True)
    sys.exit(1)


def _mask_secrets(cfg: dict[str, Any]) -> dict[str, Any]:
    """Replace secret values with masked placeholders for display."""
    import copy

    display = copy.deepcopy(cfg)
    secret_keys = {"password", "token", "secret", "webhook_url"}

    def _mask(d: dict) -> None:
        for k, v in d.items():
            # token_env names a variable, not a secret
            if k.endswith("_env"):
                continue
            if any(s in k.lower() for s in secret_keys) and isinstance(v, str) and v:
                d[k] = "***"
            elif isinstance(v, dict):
                _mask(v)

    _mask(display)
    return display


def main() -> None:
    """Entry point for the fleetguard CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
