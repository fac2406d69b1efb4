"""SQLite database setup and storage for audits, keywords, alerts and schedules.

Tables:
- audit_records (append-only history per target_url)
- keywords, keyword_history
- alert_rules, alerts (one active alert per rule_id + subject_key)
- monitoring_schedules
- notification_preferences (one row per user), notification_queue
- oauth_credentials
"""

import json
import os
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from models import (
    Alert,
    AlertRule,
    AlertStatus,
    AlertType,
    AuditRecord,
    AuditTotals,
    Category,
    CategoryScores,
    ExternalMetrics,
    Finding,
    Impact,
    Keyword,
    KeywordObservation,
    MonitoringSchedule,
    NotificationPreferences,
    RunStatus,
    ScheduleType,
    Severity,
    Status,
    Trend,
    TriggeredBy,
)

load_dotenv(dotenv_path=Path(__file__).resolve().parent / ".env")

DB_PATH = Path(os.getenv("SEOMONITOR_DB_PATH", str(Path(__file__).parent / "seomonitor.db")))

_SCHEMA = """
CREATE TABLE IF NOT EXISTS audit_records (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    target_url TEXT NOT NULL,
    triggered_by TEXT NOT NULL,
    created_at TEXT NOT NULL,
    findings_json TEXT NOT NULL,
    scores_json TEXT NOT NULL,
    totals_json TEXT NOT NULL,
    overall_score INTEGER NOT NULL,
    score_change INTEGER NOT NULL DEFAULT 0,
    new_issues_json TEXT NOT NULL DEFAULT '[]',
    resolved_issues_json TEXT NOT NULL DEFAULT '[]'
);
CREATE INDEX IF NOT EXISTS idx_audit_target_time ON audit_records (target_url, created_at);

CREATE TABLE IF NOT EXISTS keywords (
    user_id TEXT NOT NULL,
    target_url TEXT NOT NULL,
    keyword TEXT NOT NULL,
    position INTEGER NOT NULL,
    previous_position INTEGER,
    volume INTEGER NOT NULL DEFAULT 0,
    difficulty INTEGER NOT NULL DEFAULT 0,
    trend TEXT NOT NULL,
    metrics_json TEXT,
    updated_at TEXT,
    PRIMARY KEY (user_id, target_url, keyword)
);

CREATE TABLE IF NOT EXISTS keyword_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    target_url TEXT NOT NULL,
    keyword TEXT NOT NULL,
    position INTEGER NOT NULL,
    trend TEXT NOT NULL,
    observed_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_keyword_history ON keyword_history (user_id, target_url, observed_at);

CREATE TABLE IF NOT EXISTS alert_rules (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    type TEXT NOT NULL,
    condition_json TEXT NOT NULL,
    severity TEXT NOT NULL,
    enabled INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE IF NOT EXISTS alerts (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    rule_id TEXT NOT NULL,
    alert_type TEXT NOT NULL,
    subject_key TEXT NOT NULL,
    severity TEXT NOT NULL,
    title TEXT NOT NULL,
    message TEXT NOT NULL,
    details_json TEXT NOT NULL,
    status TEXT NOT NULL,
    created_at TEXT NOT NULL,
    acknowledged_at TEXT,
    acknowledged_by TEXT
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_alerts_one_active
    ON alerts (rule_id, subject_key) WHERE status = 'active';

CREATE TABLE IF NOT EXISTS monitoring_schedules (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    name TEXT NOT NULL,
    type TEXT NOT NULL,
    cron_expression TEXT NOT NULL,
    config_json TEXT NOT NULL,
    enabled INTEGER NOT NULL DEFAULT 1,
    last_run_at TEXT,
    last_run_status TEXT NOT NULL,
    run_count INTEGER NOT NULL DEFAULT 0,
    consecutive_failures INTEGER NOT NULL DEFAULT 0,
    last_error TEXT,
    last_run_details_json TEXT NOT NULL DEFAULT '{}'
);

CREATE TABLE IF NOT EXISTS notification_preferences (
    user_id TEXT PRIMARY KEY,
    email_enabled INTEGER NOT NULL,
    address TEXT NOT NULL,
    immediate_alerts INTEGER NOT NULL,
    daily_digest INTEGER NOT NULL,
    weekly_digest INTEGER NOT NULL,
    toggles_json TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS notification_queue (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    alert_id TEXT,
    address TEXT NOT NULL,
    template_kind TEXT NOT NULL,
    payload_json TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    error_message TEXT,
    created_at TEXT NOT NULL,
    sent_at TEXT
);

CREATE TABLE IF NOT EXISTS oauth_credentials (
    user_id TEXT NOT NULL,
    provider TEXT NOT NULL,
    access_token TEXT NOT NULL,
    refresh_token TEXT,
    token_type TEXT NOT NULL,
    scope TEXT,
    expires_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (user_id, provider)
);
"""


def get_connection() -> sqlite3.Connection:
    """Return a connection to the SQLite database."""
    conn = sqlite3.connect(DB_PATH)
    conn.row_factory = sqlite3.Row
    return conn


def init_db() -> None:
    """Create all tables if they do not exist."""
    conn = get_connection()
    try:
        conn.executescript(_SCHEMA)
        conn.commit()
    finally:
        conn.close()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


# ---------------------------------------------------------------------------
# Audit records
# ---------------------------------------------------------------------------


def _finding_to_dict(finding: Finding) -> dict:
    return {
        "category": finding.category.value,
        "item": finding.item,
        "status": finding.status.value,
        "impact": finding.impact.value,
        "message": finding.message,
        "fix": finding.fix,
    }


def _finding_from_dict(data: dict) -> Finding:
    return Finding(
        category=Category(data["category"]),
        item=data["item"],
        status=Status(data["status"]),
        impact=Impact(data["impact"]),
        message=data["message"],
        fix=data.get("fix"),
    )


def _row_to_audit(row: sqlite3.Row) -> AuditRecord:
    scores = json.loads(row["scores_json"])
    totals = json.loads(row["totals_json"])
    return AuditRecord(
        id=row["id"],
        user_id=row["user_id"],
        target_url=row["target_url"],
        triggered_by=TriggeredBy(row["triggered_by"]),
        timestamp=_dt(row["created_at"]),
        findings=tuple(_finding_from_dict(f) for f in json.loads(row["findings_json"])),
        scores=CategoryScores(**scores),
        totals=AuditTotals(**totals),
        score_change=row["score_change"],
        new_issues=tuple(json.loads(row["new_issues_json"])),
        resolved_issues=tuple(json.loads(row["resolved_issues_json"])),
    )


def insert_audit_record(record: AuditRecord) -> None:
    """Append an audit record. Records are never updated afterwards."""
    conn = get_connection()
    try:
        conn.execute(
            """
            INSERT INTO audit_records (
                id, user_id, target_url, triggered_by, created_at, findings_json,
                scores_json, totals_json, overall_score, score_change,
                new_issues_json, resolved_issues_json
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.id,
                record.user_id,
                record.target_url,
                record.triggered_by.value,
                _iso(record.timestamp),
                json.dumps([_finding_to_dict(f) for f in record.findings]),
                json.dumps(record.scores.__dict__),
                json.dumps(record.totals.__dict__),
                record.scores.overall,
                record.score_change,
                json.dumps(list(record.new_issues)),
                json.dumps(list(record.resolved_issues)),
            ),
        )
        conn.commit()
    finally:
        conn.close()


def get_audit_record(record_id: str) -> AuditRecord | None:
    conn = get_connection()
    try:
        row = conn.execute("SELECT * FROM audit_records WHERE id = ?", (record_id,)).fetchone()
        return _row_to_audit(row) if row else None
    finally:
        conn.close()


def list_audit_records(
    target_url: str,
    *,
    since: datetime | None = None,
    limit: int = 50,
) -> list[AuditRecord]:
    """Return history for a target, newest first."""
    safe_limit = max(1, min(500, int(limit)))
    conn = get_connection()
    try:
        rows = conn.execute(
            """
            SELECT * FROM audit_records
            WHERE target_url = ? AND created_at >= ?
            ORDER BY created_at DESC
            LIMIT ?
            """,
            (target_url, _iso(since) if since else "", safe_limit),
        ).fetchall()
        return [_row_to_audit(row) for row in rows]
    finally:
        conn.close()


def latest_audit_record(target_url: str) -> AuditRecord | None:
    records = list_audit_records(target_url, limit=1)
    return records[0] if records else None


def latest_overall_score(user_id: str) -> int | None:
    conn = get_connection()
    try:
        row = conn.execute(
            "SELECT overall_score FROM audit_records WHERE user_id = ? ORDER BY created_at DESC LIMIT 1",
            (user_id,),
        ).fetchone()
        return row["overall_score"] if row else None
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Keywords
# ---------------------------------------------------------------------------


def _row_to_keyword(row: sqlite3.Row) -> Keyword:
    metrics = json.loads(row["metrics_json"]) if row["metrics_json"] else None
    return Keyword(
        keyword=row["keyword"],
        target_url=row["target_url"],
        position=row["position"],
        volume=row["volume"],
        difficulty=row["difficulty"],
        trend=Trend(row["trend"]),
        previous_position=row["previous_position"],
        external_metrics=ExternalMetrics(**metrics) if metrics else None,
        user_id=row["user_id"],
        updated_at=_dt(row["updated_at"]),
    )


def get_keyword(user_id: str, target_url: str, keyword: str) -> Keyword | None:
    conn = get_connection()
    try:
        row = conn.execute(
            "SELECT * FROM keywords WHERE user_id = ? AND target_url = ? AND keyword = ?",
            (user_id, target_url, keyword),
        ).fetchone()
        return _row_to_keyword(row) if row else None
    finally:
        conn.close()


def list_keywords(user_id: str, target_url: str | None = None) -> list[Keyword]:
    conn = get_connection()
    try:
        if target_url is None:
            rows = conn.execute("SELECT * FROM keywords WHERE user_id = ? ORDER BY keyword", (user_id,)).fetchall()
        else:
            rows = conn.execute(
                "SELECT * FROM keywords WHERE user_id = ? AND target_url = ? ORDER BY keyword",
                (user_id, target_url),
            ).fetchall()
        return [_row_to_keyword(row) for row in rows]
    finally:
        conn.close()


def upsert_keyword(keyword: Keyword) -> None:
    metrics = keyword.external_metrics
    conn = get_connection()
    try:
        conn.execute(
            """
            INSERT INTO keywords (
                user_id, target_url, keyword, position, previous_position, volume,
                difficulty, trend, metrics_json, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (user_id, target_url, keyword) DO UPDATE SET
                position = excluded.position,
                previous_position = excluded.previous_position,
                volume = excluded.volume,
                difficulty = excluded.difficulty,
                trend = excluded.trend,
                metrics_json = excluded.metrics_json,
                updated_at = excluded.updated_at
            """,
            (
                keyword.user_id,
                keyword.target_url,
                keyword.keyword,
                keyword.position,
                keyword.previous_position,
                keyword.volume,
                keyword.difficulty,
                keyword.trend.value,
                json.dumps(metrics.__dict__) if metrics else None,
                _iso(keyword.updated_at),
            ),
        )
        conn.commit()
    finally:
        conn.close()


def insert_keyword_observation(observation: KeywordObservation) -> None:
    conn = get_connection()
    try:
        conn.execute(
            "INSERT INTO keyword_history (user_id, target_url, keyword, position, trend, observed_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (
                observation.user_id,
                observation.target_url,
                observation.keyword,
                observation.position,
                observation.trend.value,
                _iso(observation.observed_at),
            ),
        )
        conn.commit()
    finally:
        conn.close()


def list_keyword_observations(
    user_id: str, target_url: str, since: datetime
) -> dict[str, list[KeywordObservation]]:
    """One user's observations per keyword since `since`, oldest first."""
    conn = get_connection()
    try:
        rows = conn.execute(
            """
            SELECT * FROM keyword_history
            WHERE user_id = ? AND target_url = ? AND observed_at >= ?
            ORDER BY observed_at ASC, id ASC
            """,
            (user_id, target_url, _iso(since)),
        ).fetchall()
    finally:
        conn.close()

    out: dict[str, list[KeywordObservation]] = {}
    for row in rows:
        out.setdefault(row["keyword"], []).append(
            KeywordObservation(
                keyword=row["keyword"],
                target_url=row["target_url"],
                position=row["position"],
                trend=Trend(row["trend"]),
                observed_at=_dt(row["observed_at"]),
                user_id=row["user_id"],
            )
        )
    return out


# ---------------------------------------------------------------------------
# Alert rules and alerts
# ---------------------------------------------------------------------------


def _row_to_rule(row: sqlite3.Row) -> AlertRule:
    return AlertRule(
        id=row["id"],
        user_id=row["user_id"],
        type=AlertType(row["type"]),
        condition=json.loads(row["condition_json"]),
        severity=Severity(row["severity"]),
        enabled=bool(row["enabled"]),
    )


def insert_alert_rule(rule: AlertRule) -> None:
    conn = get_connection()
    try:
        conn.execute(
            "INSERT INTO alert_rules (id, user_id, type, condition_json, severity, enabled) VALUES (?, ?, ?, ?, ?, ?)",
            (rule.id, rule.user_id, rule.type.value, json.dumps(rule.condition), rule.severity.value, int(rule.enabled)),
        )
        conn.commit()
    finally:
        conn.close()


def get_alert_rule(rule_id: str) -> AlertRule | None:
    conn = get_connection()
    try:
        row = conn.execute("SELECT * FROM alert_rules WHERE id = ?", (rule_id,)).fetchone()
        return _row_to_rule(row) if row else None
    finally:
        conn.close()


def list_alert_rules(user_id: str, *, enabled_only: bool = False) -> list[AlertRule]:
    query = "SELECT * FROM alert_rules WHERE user_id = ?"
    if enabled_only:
        query += " AND enabled = 1"
    conn = get_connection()
    try:
        return [_row_to_rule(row) for row in conn.execute(query + " ORDER BY id", (user_id,)).fetchall()]
    finally:
        conn.close()


def set_alert_rule_enabled(rule_id: str, enabled: bool) -> bool:
    conn = get_connection()
    try:
        cursor = conn.execute("UPDATE alert_rules SET enabled = ? WHERE id = ?", (int(enabled), rule_id))
        conn.commit()
        return cursor.rowcount > 0
    finally:
        conn.close()


def _row_to_alert(row: sqlite3.Row) -> Alert:
    return Alert(
        id=row["id"],
        user_id=row["user_id"],
        rule_id=row["rule_id"],
        alert_type=AlertType(row["alert_type"]),
        subject_key=row["subject_key"],
        severity=Severity(row["severity"]),
        title=row["title"],
        message=row["message"],
        details=json.loads(row["details_json"]),
        status=AlertStatus(row["status"]),
        created_at=_dt(row["created_at"]),
        acknowledged_at=_dt(row["acknowledged_at"]),
        acknowledged_by=row["acknowledged_by"],
    )


def insert_alert_if_absent(alert: Alert) -> bool:
    """
    Insert `alert` unless an active alert already exists for its
    (rule_id, subject_key). Returns True when a row was created.
    """
    conn = get_connection()
    try:
        cursor = conn.execute(
            """
            INSERT OR IGNORE INTO alerts (
                id, user_id, rule_id, alert_type, subject_key, severity, title,
                message, details_json, status, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                alert.id,
                alert.user_id,
                alert.rule_id,
                alert.alert_type.value,
                alert.subject_key,
                alert.severity.value,
                alert.title,
                alert.message,
                json.dumps(alert.details, default=str),
                AlertStatus.ACTIVE.value,
                _iso(alert.created_at or utcnow()),
            ),
        )
        conn.commit()
        return cursor.rowcount == 1
    finally:
        conn.close()


def get_alert(alert_id: str) -> Alert | None:
    conn = get_connection()
    try:
        row = conn.execute("SELECT * FROM alerts WHERE id = ?", (alert_id,)).fetchone()
        return _row_to_alert(row) if row else None
    finally:
        conn.close()


def list_alerts(
    *,
    user_id: str | None = None,
    status: AlertStatus | None = None,
    since: datetime | None = None,
    limit: int | None = 100,
) -> list[Alert]:
    """Newest first. `limit=None` returns every matching alert."""
    clauses: list[str] = []
    params: list[Any] = []
    if user_id is not None:
        clauses.append("user_id = ?")
        params.append(user_id)
    if status is not None:
        clauses.append("status = ?")
        params.append(status.value)
    if since is not None:
        clauses.append("created_at >= ?")
        params.append(_iso(since))
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    query = f"SELECT * FROM alerts {where} ORDER BY created_at DESC"
    if limit is not None:
        query += " LIMIT ?"
        params.append(max(1, min(1000, int(limit))))
    conn = get_connection()
    try:
        rows = conn.execute(query, params).fetchall()
        return [_row_to_alert(row) for row in rows]
    finally:
        conn.close()


def transition_alert(
    alert_id: str,
    *,
    from_statuses: tuple[AlertStatus, ...],
    to_status: AlertStatus,
    actor: str | None = None,
    at: datetime | None = None,
) -> bool:
    """
    Move an alert to `to_status` only if it is currently in one of
    `from_statuses`. Returns False when no row matched.
    """
    placeholders = ", ".join("?" for _ in from_statuses)
    assignments = "status = ?"
    params: list[Any] = [to_status.value]
    if actor is not None:
        assignments += ", acknowledged_at = ?, acknowledged_by = ?"
        params.extend([_iso(at or utcnow()), actor])
    params.append(alert_id)
    params.extend(s.value for s in from_statuses)
    conn = get_connection()
    try:
        cursor = conn.execute(
            f"UPDATE alerts SET {assignments} WHERE id = ? AND status IN ({placeholders})",
            params,
        )
        conn.commit()
        return cursor.rowcount == 1
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Monitoring schedules
# ---------------------------------------------------------------------------


def _row_to_schedule(row: sqlite3.Row) -> MonitoringSchedule:
    return MonitoringSchedule(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        type=ScheduleType(row["type"]),
        cron_expression=row["cron_expression"],
        config=json.loads(row["config_json"]),
        enabled=bool(row["enabled"]),
        last_run_at=_dt(row["last_run_at"]),
        last_run_status=RunStatus(row["last_run_status"]),
        run_count=row["run_count"],
        consecutive_failures=row["consecutive_failures"],
        last_error=row["last_error"],
        last_run_details=json.loads(row["last_run_details_json"]),
    )


def insert_schedule(schedule: MonitoringSchedule) -> None:
    conn = get_connection()
    try:
        conn.execute(
            """
            INSERT INTO monitoring_schedules (
                id, user_id, name, type, cron_expression, config_json, enabled, last_run_status
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                schedule.id,
                schedule.user_id,
                schedule.name,
                schedule.type.value,
                schedule.cron_expression,
                json.dumps(schedule.config),
                int(schedule.enabled),
                schedule.last_run_status.value,
            ),
        )
        conn.commit()
    finally:
        conn.close()


def get_schedule(schedule_id: str) -> MonitoringSchedule | None:
    conn = get_connection()
    try:
        row = conn.execute("SELECT * FROM monitoring_schedules WHERE id = ?", (schedule_id,)).fetchone()
        return _row_to_schedule(row) if row else None
    finally:
        conn.close()


def list_schedules(*, user_id: str | None = None, enabled_only: bool = False) -> list[MonitoringSchedule]:
    clauses: list[str] = []
    params: list[Any] = []
    if user_id is not None:
        clauses.append("user_id = ?")
        params.append(user_id)
    if enabled_only:
        clauses.append("enabled = 1")
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    conn = get_connection()
    try:
        rows = conn.execute(f"SELECT * FROM monitoring_schedules {where} ORDER BY name", params).fetchall()
        return [_row_to_schedule(row) for row in rows]
    finally:
        conn.close()


def set_schedule_enabled(schedule_id: str, enabled: bool) -> bool:
    conn = get_connection()
    try:
        cursor = conn.execute("UPDATE monitoring_schedules SET enabled = ? WHERE id = ?", (int(enabled), schedule_id))
        conn.commit()
        return cursor.rowcount > 0
    finally:
        conn.close()


def record_schedule_run(schedule: MonitoringSchedule) -> None:
    """Persist the run bookkeeping fields of `schedule`."""
    conn = get_connection()
    try:
        conn.execute(
            """
            UPDATE monitoring_schedules SET
                last_run_at = ?, last_run_status = ?, run_count = ?,
                consecutive_failures = ?, last_error = ?, last_run_details_json = ?
            WHERE id = ?
            """,
            (
                _iso(schedule.last_run_at),
                schedule.last_run_status.value,
                schedule.run_count,
                schedule.consecutive_failures,
                schedule.last_error,
                json.dumps(schedule.last_run_details, default=str),
                schedule.id,
            ),
        )
        conn.commit()
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Notification preferences and queue
# ---------------------------------------------------------------------------


def _row_to_preferences(row: sqlite3.Row) -> NotificationPreferences:
    toggles = json.loads(row["toggles_json"])
    prefs = NotificationPreferences(
        user_id=row["user_id"],
        email_enabled=bool(row["email_enabled"]),
        address=row["address"],
        immediate_alerts=bool(row["immediate_alerts"]),
        daily_digest=bool(row["daily_digest"]),
        weekly_digest=bool(row["weekly_digest"]),
    )
    for key, value in toggles.items():
        try:
            prefs.alert_type_toggles[AlertType(key)] = bool(value)
        except ValueError:
            continue
    return prefs


def _preferences_params(prefs: NotificationPreferences) -> tuple:
    return (
        prefs.user_id,
        int(prefs.email_enabled),
        prefs.address,
        int(prefs.immediate_alerts),
        int(prefs.daily_digest),
        int(prefs.weekly_digest),
        json.dumps({k.value: v for k, v in prefs.alert_type_toggles.items()}),
    )


def get_or_create_preferences(user_id: str) -> NotificationPreferences:
    """Return the user's preferences, inserting defaults on first access."""
    conn = get_connection()
    try:
        conn.execute(
            """
            INSERT OR IGNORE INTO notification_preferences (
                user_id, email_enabled, address, immediate_alerts, daily_digest,
                weekly_digest, toggles_json
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            _preferences_params(NotificationPreferences(user_id=user_id)),
        )
        conn.commit()
        row = conn.execute("SELECT * FROM notification_preferences WHERE user_id = ?", (user_id,)).fetchone()
        return _row_to_preferences(row)
    finally:
        conn.close()


def save_preferences(prefs: NotificationPreferences) -> None:
    conn = get_connection()
    try:
        conn.execute(
            """
            INSERT INTO notification_preferences (
                user_id, email_enabled, address, immediate_alerts, daily_digest,
                weekly_digest, toggles_json
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (user_id) DO UPDATE SET
                email_enabled = excluded.email_enabled,
                address = excluded.address,
                immediate_alerts = excluded.immediate_alerts,
                daily_digest = excluded.daily_digest,
                weekly_digest = excluded.weekly_digest,
                toggles_json = excluded.toggles_json
            """,
            _preferences_params(prefs),
        )
        conn.commit()
    finally:
        conn.close()


def list_preferences() -> list[NotificationPreferences]:
    conn = get_connection()
    try:
        rows = conn.execute("SELECT * FROM notification_preferences ORDER BY user_id").fetchall()
        return [_row_to_preferences(row) for row in rows]
    finally:
        conn.close()


def enqueue_notification(
    *,
    user_id: str,
    address: str,
    template_kind: str,
    payload: dict,
    alert_id: str | None = None,
) -> int:
    conn = get_connection()
    try:
        cursor = conn.execute(
            """
            INSERT INTO notification_queue (user_id, alert_id, address, template_kind, payload_json, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (user_id, alert_id, address, template_kind, json.dumps(payload, default=str), _iso(utcnow())),
        )
        conn.commit()
        return cursor.lastrowid
    finally:
        conn.close()


def list_notifications(*, status: str | None = "pending", limit: int = 100) -> list[dict]:
    conn = get_connection()
    try:
        if status is None:
            rows = conn.execute("SELECT * FROM notification_queue ORDER BY id LIMIT ?", (limit,)).fetchall()
        else:
            rows = conn.execute(
                "SELECT * FROM notification_queue WHERE status = ? ORDER BY id LIMIT ?",
                (status, limit),
            ).fetchall()
        return [{**dict(row), "payload": json.loads(row["payload_json"])} for row in rows]
    finally:
        conn.close()


def mark_notification(notification_id: int, status: str, error_message: str | None = None) -> None:
    conn = get_connection()
    try:
        conn.execute(
            "UPDATE notification_queue SET status = ?, error_message = ?, sent_at = ? WHERE id = ?",
            (status, error_message, _iso(utcnow()), notification_id),
        )
        conn.commit()
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# OAuth credentials
# ---------------------------------------------------------------------------


def save_credentials(
    *,
    user_id: str,
    provider: str,
    access_token: str,
    refresh_token: str | None,
    token_type: str,
    scope: str | None,
    expires_at: datetime,
) -> None:
    conn = get_connection()
    try:
        conn.execute(
            """
            INSERT INTO oauth_credentials (
                user_id, provider, access_token, refresh_token, token_type, scope, expires_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (user_id, provider) DO UPDATE SET
                access_token = excluded.access_token,
                refresh_token = COALESCE(excluded.refresh_token, oauth_credentials.refresh_token),
                token_type = excluded.token_type,
                scope = excluded.scope,
                expires_at = excluded.expires_at,
                updated_at = excluded.updated_at
            """,
            (user_id, provider, access_token, refresh_token, token_type, scope, _iso(expires_at), _iso(utcnow())),
        )
        conn.commit()
    finally:
        conn.close()


def get_credentials(user_id: str, provider: str) -> dict | None:
    conn = get_connection()
    try:
        row = conn.execute(
            "SELECT * FROM oauth_credentials WHERE user_id = ? AND provider = ?",
            (user_id, provider),
        ).fetchone()
        if row is None:
            return None
        data = dict(row)
        data["expires_at"] = _dt(data["expires_at"])
        data["updated_at"] = _dt(data["updated_at"])
        return data
    finally:
        conn.close()
