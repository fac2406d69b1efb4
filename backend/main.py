"""SEO Monitor API – FastAPI app: audits, alerts, rules, schedules, integrations."""

import logging
import os
import uuid

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, PlainTextResponse, Response

import database
import pipeline
import reports
from alert_rules import RuleConditionError, validate_condition
from alerts import AlertLifecycleManager, AlertNotFound, InvalidAlertState
from models import AlertRule, AlertStatus, AuditRecord, MonitoringSchedule, NotificationPreferences
from oauth_coordinator import AuthCoordinator, AuthorizationInProgress, callback_origin
from scheduler import SyncScheduler, parse_cron
from scraper import SnapshotUnavailable
from schemas import (
    AcknowledgeRequest,
    AlertResponse,
    AlertRuleRequest,
    AlertRuleResponse,
    AuditHistoryItem,
    AuditRequest,
    AuditResponse,
    AuditRunResponse,
    AuthorizeRequest,
    AuthorizeResponse,
    EnabledRequest,
    FindingResponse,
    PreferencesPayload,
    ScheduleRequest,
    ScheduleResponse,
    ScoresResponse,
    TotalsResponse,
)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

SCHEDULER_AUTOSTART = os.getenv("SCHEDULER_AUTOSTART", "true").strip().lower() in ("1", "true", "yes")

app = FastAPI(
    title="SEO Monitor API",
    description="SEO audit, scoring and monitoring engine",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

alert_manager = AlertLifecycleManager()
coordinator = AuthCoordinator()
sync_scheduler = SyncScheduler(manager=alert_manager)


@app.on_event("startup")
def startup() -> None:
    database.init_db()
    if SCHEDULER_AUTOSTART:
        sync_scheduler.start()


@app.on_event("shutdown")
def shutdown() -> None:
    sync_scheduler.stop()


def _audit_response(record: AuditRecord) -> AuditResponse:
    return AuditResponse(
        id=record.id,
        target_url=record.target_url,
        triggered_by=record.triggered_by.value,
        timestamp=record.timestamp,
        findings=[
            FindingResponse(
                category=f.category.value,
                item=f.item,
                status=f.status.value,
                impact=f.impact.value,
                message=f.message,
                fix=f.fix,
            )
            for f in record.findings
        ],
        scores=ScoresResponse(**record.scores.__dict__),
        totals=TotalsResponse(**record.totals.__dict__),
        score_change=record.score_change,
        new_issues=list(record.new_issues),
        resolved_issues=list(record.resolved_issues),
    )


def _schedule_response(schedule: MonitoringSchedule) -> ScheduleResponse:
    return ScheduleResponse(
        id=schedule.id,
        user_id=schedule.user_id,
        name=schedule.name,
        type=schedule.type,
        cron_expression=schedule.cron_expression,
        config=schedule.config,
        enabled=schedule.enabled,
        last_run_at=schedule.last_run_at,
        last_run_status=schedule.last_run_status.value,
        run_count=schedule.run_count,
        consecutive_failures=schedule.consecutive_failures,
        last_error=schedule.last_error,
        last_run_details=schedule.last_run_details,
    )


# ---------------------------------------------------------------------------
# Audits
# ---------------------------------------------------------------------------


@app.post("/audits", response_model=AuditRunResponse)
def create_audit(body: AuditRequest) -> AuditRunResponse:
    """
    Pipeline: snapshot -> checks -> scores -> store -> evaluate alert rules.
    """
    try:
        record, created = pipeline.audit_and_alert(body.url, user_id=body.user_id, manager=alert_manager)
    except SnapshotUnavailable as e:
        raise HTTPException(status_code=502, detail=f"Could not inspect {e.url}: {e.reason}")
    return AuditRunResponse(audit=_audit_response(record), alerts_created=[a.id for a in created])


@app.get("/audits/{audit_id}", response_model=AuditResponse)
def get_audit(audit_id: str) -> AuditResponse:
    record = database.get_audit_record(audit_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Audit not found")
    return _audit_response(record)


@app.get("/audits", response_model=list[AuditHistoryItem])
def list_audits(url: str, limit: int = 20) -> list[AuditHistoryItem]:
    """Return audit history for a target, newest first."""
    return [
        AuditHistoryItem(
            id=r.id,
            target_url=r.target_url,
            triggered_by=r.triggered_by.value,
            timestamp=r.timestamp,
            overall=r.scores.overall,
            score_change=r.score_change,
        )
        for r in database.list_audit_records(url, limit=limit)
    ]


@app.get("/audits/{audit_id}/export")
def export_audit(audit_id: str, format: str = "json") -> Response:
    record = database.get_audit_record(audit_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Audit not found")
    if format == "json":
        return Response(content=reports.to_json(record), media_type="application/json")
    if format == "csv":
        return PlainTextResponse(
            content=reports.to_csv(record),
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="seo-audit-{audit_id}.csv"'},
        )
    raise HTTPException(status_code=400, detail="Format must be json or csv.")


# ---------------------------------------------------------------------------
# Alerts and rules
# ---------------------------------------------------------------------------


@app.get("/alerts", response_model=list[AlertResponse])
def get_alerts(user_id: str | None = None, status: AlertStatus | None = None) -> list[AlertResponse]:
    return [AlertResponse(**a.__dict__) for a in database.list_alerts(user_id=user_id, status=status)]


@app.post("/alerts/{alert_id}/acknowledge", response_model=AlertResponse)
def acknowledge_alert(alert_id: str, body: AcknowledgeRequest) -> AlertResponse:
    try:
        alert = alert_manager.acknowledge(alert_id, body.actor)
    except AlertNotFound:
        raise HTTPException(status_code=404, detail="Alert not found")
    except InvalidAlertState as e:
        raise HTTPException(status_code=409, detail=str(e))
    return AlertResponse(**alert.__dict__)


@app.post("/alerts/{alert_id}/dismiss", response_model=AlertResponse)
def dismiss_alert(alert_id: str) -> AlertResponse:
    try:
        alert = alert_manager.dismiss(alert_id)
    except AlertNotFound:
        raise HTTPException(status_code=404, detail="Alert not found")
    except InvalidAlertState as e:
        raise HTTPException(status_code=409, detail=str(e))
    return AlertResponse(**alert.__dict__)


@app.post("/rules", response_model=AlertRuleResponse)
def create_rule(body: AlertRuleRequest) -> AlertRuleResponse:
    rule_id = str(uuid.uuid4())
    try:
        condition = validate_condition(body.type, body.condition, rule_id=rule_id)
    except RuleConditionError as e:
        raise HTTPException(status_code=422, detail=e.reason)
    rule = AlertRule(
        id=rule_id,
        user_id=body.user_id,
        type=body.type,
        condition=condition.model_dump(),
        severity=body.severity,
        enabled=body.enabled,
    )
    database.insert_alert_rule(rule)
    return AlertRuleResponse(**rule.__dict__)


@app.get("/rules", response_model=list[AlertRuleResponse])
def get_rules(user_id: str = "") -> list[AlertRuleResponse]:
    return [AlertRuleResponse(**r.__dict__) for r in database.list_alert_rules(user_id)]


@app.post("/rules/{rule_id}/enabled", response_model=AlertRuleResponse)
def set_rule_enabled(rule_id: str, body: EnabledRequest) -> AlertRuleResponse:
    if not database.set_alert_rule_enabled(rule_id, body.enabled):
        raise HTTPException(status_code=404, detail="Rule not found")
    return AlertRuleResponse(**database.get_alert_rule(rule_id).__dict__)


# ---------------------------------------------------------------------------
# Notification preferences
# ---------------------------------------------------------------------------


@app.get("/preferences/{user_id}", response_model=PreferencesPayload)
def get_preferences(user_id: str) -> PreferencesPayload:
    prefs = database.get_or_create_preferences(user_id)
    return PreferencesPayload(**{k: v for k, v in prefs.__dict__.items() if k != "user_id"})


@app.put("/preferences/{user_id}", response_model=PreferencesPayload)
def put_preferences(user_id: str, body: PreferencesPayload) -> PreferencesPayload:
    toggles = NotificationPreferences(user_id=user_id).alert_type_toggles
    toggles.update(body.alert_type_toggles)
    prefs = NotificationPreferences(
        user_id=user_id,
        email_enabled=body.email_enabled,
        address=body.address,
        immediate_alerts=body.immediate_alerts,
        daily_digest=body.daily_digest,
        weekly_digest=body.weekly_digest,
        alert_type_toggles=toggles,
    )
    database.save_preferences(prefs)
    return get_preferences(user_id)


# ---------------------------------------------------------------------------
# Schedules
# ---------------------------------------------------------------------------


@app.post("/schedules", response_model=ScheduleResponse)
def create_schedule(body: ScheduleRequest) -> ScheduleResponse:
    try:
        parse_cron(body.cron_expression)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    schedule = MonitoringSchedule(
        id=str(uuid.uuid4()),
        user_id=body.user_id,
        name=body.name,
        type=body.type,
        cron_expression=body.cron_expression,
        config=body.config,
        enabled=body.enabled,
    )
    database.insert_schedule(schedule)
    return _schedule_response(schedule)


@app.get("/schedules", response_model=list[ScheduleResponse])
def get_schedules(user_id: str | None = None) -> list[ScheduleResponse]:
    return [_schedule_response(s) for s in database.list_schedules(user_id=user_id)]


@app.post("/schedules/{schedule_id}/enabled", response_model=ScheduleResponse)
def set_schedule_enabled(schedule_id: str, body: EnabledRequest) -> ScheduleResponse:
    if not database.set_schedule_enabled(schedule_id, body.enabled):
        raise HTTPException(status_code=404, detail="Schedule not found")
    return _schedule_response(database.get_schedule(schedule_id))


@app.post("/schedules/{schedule_id}/run", response_model=ScheduleResponse)
def run_schedule(schedule_id: str) -> ScheduleResponse:
    """Run a schedule now, regardless of its cron expression."""
    schedule = database.get_schedule(schedule_id)
    if schedule is None:
        raise HTTPException(status_code=404, detail="Schedule not found")
    if sync_scheduler.tick(schedule, force=True) is None:
        raise HTTPException(status_code=409, detail="Schedule is already running")
    return _schedule_response(database.get_schedule(schedule_id))


# ---------------------------------------------------------------------------
# Ranking provider integration
# ---------------------------------------------------------------------------


@app.post("/integrations/authorize", response_model=AuthorizeResponse)
async def start_authorization(body: AuthorizeRequest) -> AuthorizeResponse:
    try:
        session = coordinator.launch(body.user_id)
    except AuthorizationInProgress as e:
        raise HTTPException(status_code=409, detail=str(e))
    return AuthorizeResponse(
        user_id=session.user_id,
        state=session.state.value,
        message=session.authorization_url,
    )


@app.get("/integrations/authorize/{user_id}", response_model=AuthorizeResponse)
async def authorization_status(user_id: str) -> AuthorizeResponse:
    session = coordinator.status(user_id)
    if session is None:
        return AuthorizeResponse(user_id=user_id, state="idle")
    return AuthorizeResponse(user_id=user_id, state=session.state.value, message=session.error or "")


@app.get("/oauth/callback", response_class=HTMLResponse)
def oauth_callback(state: str = "", code: str = "", error: str = "") -> HTMLResponse:
    """
    Provider redirect target; hands the result to the waiting session.

    The request Host header is client-controlled and is rewritten by TLS
    proxies, so the published origin is the configured GSC_REDIRECT_URI
    origin. The session's correlation token is what binds a callback to
    its session.
    """
    payload = {"state": state, "code": code, "error": error}
    coordinator.channel.publish(callback_origin(), payload)
    if error:
        body = "<p>Authorization failed. You can close this window and try again.</p>"
    else:
        body = "<p>Authorization complete. You can close this window.</p>"
    return HTMLResponse(content=f"<html><body>{body}</body></html>")


@app.get("/health")
def health() -> dict:
    """Health check for deployment."""
    return {"status": "ok"}
