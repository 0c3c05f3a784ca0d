"""FastAPI application exposing alerts, rules, repair sessions and mission callbacks."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from fleetguard.alerts.manager import AlertManager
from fleetguard.collectors.base import SnapshotError
from fleetguard.engine.scheduler import MIN_INTERVAL, EvaluationScheduler
from fleetguard.missions.base import MissionDispatchError, MissionResult
from fleetguard.models import AlertCondition, AlertSeverity, AlertStatus
from fleetguard.notifications.slack import NotificationError, SlackNotifier
from fleetguard.notifications.webhooks import WebhookStore
from fleetguard.repair.loop import DiagnoseRepairLoop, PhaseError
from fleetguard.repair.models import MonitoredResource, MonitorIssue
from fleetguard.repair.sessions import SessionRegistry
from fleetguard.reporters.json_reporter import session_to_dict
from fleetguard.rules.store import RuleStore

# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------


class AcknowledgeBody(BaseModel):
    by: str | None = None


class NotifyBody(BaseModel):
    webhook_id: str


class RuleCreate(BaseModel):
    name: str = Field(min_length=1)
    description: str = ""
    severity: AlertSeverity = AlertSeverity.WARNING
    enabled: bool = True
    condition: AlertCondition


class RuleUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    description: str | None = None
    severity: AlertSeverity | None = None
    enabled: bool | None = None
    condition: AlertCondition | None = None


class SessionCreate(BaseModel):
    monitor_type: str = Field(min_length=1)
    repairable: bool | None = None
    max_loops: int | None = Field(default=None, ge=1, le=10)


class DiagnoseBody(BaseModel):
    resources: list[MonitoredResource] = Field(default_factory=list)
    issues: list[MonitorIssue] = Field(default_factory=list)
    context: dict[str, Any] = Field(default_factory=dict)


class ApproveBody(BaseModel):
    repair_id: str


class MissionCompletion(BaseModel):
    success: bool = True
    output: str = ""
    error: str | None = None
    summary: str | None = None
    root_cause: str | None = None
    suggestions: list[str] = Field(default_factory=list)


class WebhookCreate(BaseModel):
    name: str = Field(min_length=1)
    webhook_url: str
    channel: str | None = None


class SettingsUpdate(BaseModel):
    evaluation_interval: int | None = Field(default=None, ge=MIN_INTERVAL, le=3600)


def create_app(
    manager: AlertManager,
    rules: RuleStore,
    sessions: SessionRegistry,
    webhooks: WebhookStore,
    notifier: SlackNotifier | None = None,
    scheduler: EvaluationScheduler | None = None,
    cfg: dict[str, Any] | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        manager: Alert manager backing the /api/alerts endpoints.
        rules: Rule store backing /api/rules.
        sessions: Diagnose/repair sessions and mission-result routing.
        webhooks: Slack webhook registry.
        notifier: Slack delivery; defaults to a notifier built from ``cfg``.
        scheduler: Evaluation scheduler; when absent /api/evaluate calls the
            manager directly with its own snapshot source.
        cfg: Full fleetguard config dict.

    Returns:
        Configured FastAPI application ready to be passed to uvicorn.run().
    """
    from fleetguard import __version__

    cfg = cfg or {}
    notify_cfg = cfg.get("notifications", {})
    notifier = notifier or SlackNotifier(
        timeout=notify_cfg.get("timeout", 10),
        retry_attempts=notify_cfg.get("retry_attempts", 3),
    )

    app = FastAPI(
        title="fleetguard",
        description="Kubernetes fleet alerting and AI diagnose/repair orchestration",
        version=__version__,
    )

    # -------------------------------------------------------------------------
    # Error mapping
    # -------------------------------------------------------------------------

    @app.exception_handler(PhaseError)
    async def _phase_error(_request: Request, exc: PhaseError) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc), "phase": exc.phase.value})

    @app.exception_handler(MissionDispatchError)
    async def _dispatch_error(_request: Request, exc: MissionDispatchError) -> JSONResponse:
        return JSONResponse(status_code=502, content={"detail": str(exc)})

    @app.exception_handler(NotificationError)
    async def _notification_error(_request: Request, exc: NotificationError) -> JSONResponse:
        return JSONResponse(status_code=502, content={"detail": str(exc)})

    def _session_or_404(session_id: str) -> DiagnoseRepairLoop:
        session = sessions.get(session_id)
        if session is None:
            raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
        return session

    def _session_body(session: DiagnoseRepairLoop) -> dict[str, Any]:
        return session_to_dict(session.session_id, session.monitor_type, session.state)

    # -------------------------------------------------------------------------
    # Status and settings
    # -------------------------------------------------------------------------

    @app.get("/api/status")
    async def api_status() -> dict[str, Any]:
        """Server health, alert counts and scheduler state."""
        return {
            "ok": True,
            "version": __version__,
            "stats": manager.stats().model_dump(),
            "last_evaluated_at": (
                manager.last_evaluated_at.isoformat() if manager.last_evaluated_at else None
            ),
            "scheduler": scheduler.get_state() if scheduler else None,
            "server_time": datetime.now(timezone.utc).isoformat(),
        }

    @app.get("/api/settings")
    async def api_settings_get() -> dict[str, Any]:
        state = scheduler.get_state() if scheduler else {}
        return {"evaluation_interval": state.get("interval")}

    @app.post("/api/settings")
    async def api_settings_post(body: SettingsUpdate) -> dict[str, Any]:
        """Update the evaluation interval at runtime."""
        if body.evaluation_interval is not None:
            if scheduler is None:
                raise HTTPException(status_code=409, detail="No scheduler is running")
            try:
                scheduler.set_interval(body.evaluation_interval)
            except ValueError as e:
                raise HTTPException(status_code=422, detail=str(e)) from e
        state = scheduler.get_state() if scheduler else {}
        return {"ok": True, "evaluation_interval": state.get("interval")}

    @app.post("/api/evaluate")
    async def api_evaluate() -> dict[str, Any]:
        """Evaluate every enabled rule now. Blocks until complete."""
        try:
            if scheduler is not None:
                firing = await run_in_threadpool(scheduler.run_once)
            else:
                firing = await run_in_threadpool(manager.evaluate)
        except SnapshotError as e:
            raise HTTPException(status_code=502, detail=str(e)) from e
        except RuntimeError as e:
            raise HTTPException(status_code=503, detail=str(e)) from e
        return {
            "ok": True,
            "firing": [a.model_dump(mode="json") for a in firing],
            "stats": manager.stats().model_dump(),
        }

    # -------------------------------------------------------------------------
    # Alerts
    # -------------------------------------------------------------------------

    @app.get("/api/alerts")
    async def api_alerts(status: AlertStatus | None = None) -> dict[str, Any]:
        alerts = manager.alerts(status)
        return {
            "alerts": [a.model_dump(mode="json") for a in alerts],
            "total": len(alerts),
            "stats": manager.stats().model_dump(),
        }

    @app.get("/api/alerts/{alert_id}")
    async def api_alert(alert_id: str) -> dict[str, Any]:
        alert = manager.get(alert_id)
        if alert is None:
            raise HTTPException(status_code=404, detail=f"Alert {alert_id} not found")
        return alert.model_dump(mode="json")

    @app.post("/api/alerts/{alert_id}/acknowledge")
    async def api_alert_acknowledge(alert_id: str, body: AcknowledgeBody | None = None) -> dict[str, Any]:
        alert = manager.acknowledge(alert_id, by=body.by if body else None)
        if alert is None:
            raise HTTPException(status_code=404, detail=f"Alert {alert_id} not found")
        return alert.model_dump(mode="json")

    @app.post("/api/alerts/{alert_id}/resolve")
    async def api_alert_resolve(alert_id: str) -> dict[str, Any]:
        alert = manager.resolve(alert_id)
        if alert is None:
            raise HTTPException(status_code=404, detail=f"Alert {alert_id} not found")
        return alert.model_dump(mode="json")

    @app.delete("/api/alerts/{alert_id}")
    async def api_alert_delete(alert_id: str) -> dict[str, Any]:
        if not manager.delete(alert_id):
            raise HTTPException(status_code=404, detail=f"Alert {alert_id} not found")
        return {"ok": True}

    @app.post("/api/alerts/{alert_id}/diagnose")
    async def api_alert_diagnose(alert_id: str) -> dict[str, Any]:
        """Start an AI diagnosis mission for the alert."""
        mission_id = await run_in_threadpool(manager.run_ai_diagnosis, alert_id)
        if mission_id is None:
            raise HTTPException(status_code=404, detail=f"Alert {alert_id} not found")
        return {"ok": True, "mission_id": mission_id}

    @app.post("/api/alerts/{alert_id}/notify")
    async def api_alert_notify(alert_id: str, body: NotifyBody) -> dict[str, Any]:
        """Send the alert to a Slack webhook."""
        alert = manager.get(alert_id)
        if alert is None:
            raise HTTPException(status_code=404, detail=f"Alert {alert_id} not found")
        webhook = webhooks.get(body.webhook_id)
        if webhook is None:
            raise HTTPException(status_code=404, detail=f"Webhook {body.webhook_id} not found")
        await run_in_threadpool(notifier.send, alert, webhook)
        return {"ok": True}

    # -------------------------------------------------------------------------
    # Rules
    # -------------------------------------------------------------------------

    @app.get("/api/rules")
    async def api_rules() -> dict[str, Any]:
        all_rules = rules.list()
        return {"rules": [r.model_dump(mode="json") for r in all_rules], "total": len(all_rules)}

    @app.post("/api/rules", status_code=201)
    async def api_rule_create(body: RuleCreate) -> dict[str, Any]:
        rule = rules.create(
            name=body.name,
            condition=body.condition,
            severity=body.severity,
            enabled=body.enabled,
            description=body.description,
        )
        return rule.model_dump(mode="json")

    @app.patch("/api/rules/{rule_id}")
    async def api_rule_update(rule_id: str, body: RuleUpdate) -> dict[str, Any]:
        changes = body.model_dump(exclude_none=True)
        try:
            rule = rules.update(rule_id, **changes)
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e)) from e
        if rule is None:
            raise HTTPException(status_code=404, detail=f"Rule {rule_id} not found")
        return rule.model_dump(mode="json")

    @app.post("/api/rules/{rule_id}/toggle")
    async def api_rule_toggle(rule_id: str) -> dict[str, Any]:
        rule = rules.toggle(rule_id)
        if rule is None:
            raise HTTPException(status_code=404, detail=f"Rule {rule_id} not found")
        return rule.model_dump(mode="json")

    @app.delete("/api/rules/{rule_id}")
    async def api_rule_delete(rule_id: str) -> dict[str, Any]:
        if not rules.delete(rule_id):
            raise HTTPException(status_code=404, detail=f"Rule {rule_id} not found")
        return {"ok": True}

    # -------------------------------------------------------------------------
    # Diagnose/repair sessions
    # -------------------------------------------------------------------------

    @app.get("/api/sessions")
    async def api_sessions() -> dict[str, Any]:
        live = sessions.list()
        return {"sessions": [_session_body(s) for s in live], "total": len(live)}

    @app.post("/api/sessions", status_code=201)
    async def api_session_create(body: SessionCreate) -> dict[str, Any]:
        session = sessions.create(body.monitor_type, repairable=body.repairable, max_loops=body.max_loops)
        return _session_body(session)

    @app.get("/api/sessions/{session_id}")
    async def api_session(session_id: str) -> dict[str, Any]:
        return _session_body(_session_or_404(session_id))

    @app.delete("/api/sessions/{session_id}")
    async def api_session_delete(session_id: str) -> dict[str, Any]:
        if not sessions.remove(session_id):
            raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
        return {"ok": True}

    @app.post("/api/sessions/{session_id}/diagnose")
    async def api_session_diagnose(session_id: str, body: DiagnoseBody) -> dict[str, Any]:
        session = _session_or_404(session_id)
        await run_in_threadpool(session.start_diagnose, body.resources, body.issues, body.context)
        return _session_body(session)

    @app.post("/api/sessions/{session_id}/approve")
    async def api_session_approve(session_id: str, body: ApproveBody) -> dict[str, Any]:
        session = _session_or_404(session_id)
        if not session.approve_repair(body.repair_id):
            raise HTTPException(status_code=404, detail=f"Repair {body.repair_id} not found")
        return _session_body(session)

    @app.post("/api/sessions/{session_id}/approve-all")
    async def api_session_approve_all(session_id: str) -> dict[str, Any]:
        session = _session_or_404(session_id)
        session.approve_all_repairs()
        return _session_body(session)

    @app.post("/api/sessions/{session_id}/execute")
    async def api_session_execute(session_id: str) -> dict[str, Any]:
        session = _session_or_404(session_id)
        executed = await run_in_threadpool(session.execute_repairs)
        body = _session_body(session)
        body["executed"] = executed
        return body

    @app.post("/api/sessions/{session_id}/cancel")
    async def api_session_cancel(session_id: str) -> dict[str, Any]:
        session = _session_or_404(session_id)
        session.cancel()
        return _session_body(session)

    @app.post("/api/sessions/{session_id}/reset")
    async def api_session_reset(session_id: str) -> dict[str, Any]:
        session = _session_or_404(session_id)
        session.reset()
        return _session_body(session)

    # -------------------------------------------------------------------------
    # Mission runner callback
    # -------------------------------------------------------------------------

    @app.post("/api/missions/{mission_id}/complete")
    async def api_mission_complete(mission_id: str, body: MissionCompletion) -> dict[str, Any]:
        """Completion signal from the mission runner."""
        result = MissionResult(mission_id=mission_id, **body.model_dump())
        owner = sessions.deliver(result)
        if owner is None:
            raise HTTPException(status_code=404, detail=f"No session or alert waiting on mission {mission_id}")
        return {"ok": True, "routed_to": owner}

    # -------------------------------------------------------------------------
    # Slack webhooks
    # -------------------------------------------------------------------------

    @app.get("/api/webhooks")
    async def api_webhooks() -> dict[str, Any]:
        return {"webhooks": [w.model_dump(mode="json") for w in webhooks.list()]}

    @app.post("/api/webhooks", status_code=201)
    async def api_webhook_create(body: WebhookCreate) -> dict[str, Any]:
        try:
            webhook = webhooks.add(body.name, body.webhook_url, body.channel)
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e)) from e
        return webhook.model_dump(mode="json")

    @app.delete("/api/webhooks/{webhook_id}")
    async def api_webhook_delete(webhook_id: str) -> dict[str, Any]:
        if not webhooks.remove(webhook_id):
            raise HTTPException(status_code=404, detail=f"Webhook {webhook_id} not found")
        return {"ok": True}

    return app
