"""Pydantic schemas for API request/response and alert rule conditions."""

import re
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models import AlertStatus, AlertType, ScheduleType, Severity

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
URL_PATTERN = re.compile(r"^https?://[^\s/$.?#].[^\s]*$", re.I)


# ---------------------------------------------------------------------------
# Rule conditions
# ---------------------------------------------------------------------------


class _Condition(BaseModel):
    model_config = ConfigDict(extra="forbid")


class ScoreDropCondition(_Condition):
    threshold_points: int = Field(ge=1, le=100)
    window_hours: int = Field(default=24, ge=1)
    category: Literal["overall", "technical", "on_page", "performance", "mobile", "accessibility"] = "overall"


class KeywordChangeCondition(_Condition):
    threshold_positions: int = Field(ge=1)
    window_hours: int = Field(default=24, ge=1)


class FailureCondition(_Condition):
    """Used by ExternalSourceIssue and PerformanceIssue rules."""

    failure_threshold: int = Field(default=3, ge=1)


CONDITION_MODELS: dict[AlertType, type[_Condition]] = {
    AlertType.SCORE_DROP: ScoreDropCondition,
    AlertType.KEYWORD_CHANGE: KeywordChangeCondition,
    AlertType.EXTERNAL_SOURCE_ISSUE: FailureCondition,
    AlertType.PERFORMANCE_ISSUE: FailureCondition,
}


# ---------------------------------------------------------------------------
# Audits
# ---------------------------------------------------------------------------


class AuditRequest(BaseModel):
    """Request body for POST /audits."""

    url: str
    user_id: str = ""

    @field_validator("url", mode="before")
    @classmethod
    def normalize_url(cls, value: object) -> str:
        text = str(value or "").strip()
        if text and "://" not in text:
            text = f"https://{text}"
        if not URL_PATTERN.match(text):
            raise ValueError("Invalid URL")
        return text

    @field_validator("user_id", mode="before")
    @classmethod
    def normalize_user(cls, value: object) -> str:
        return str(value or "").strip()


class FindingResponse(BaseModel):
    category: str
    item: str
    status: str
    impact: str
    message: str
    fix: str | None = None


class ScoresResponse(BaseModel):
    technical: int
    on_page: int
    performance: int
    mobile: int
    accessibility: int
    overall: int


class TotalsResponse(BaseModel):
    checked: int
    passed: int
    warned: int
    failed: int


class AuditResponse(BaseModel):
    """Full audit record returned by GET /audits/{id}."""

    id: str
    target_url: str
    triggered_by: str
    timestamp: datetime
    findings: list[FindingResponse]
    scores: ScoresResponse
    totals: TotalsResponse
    score_change: int
    new_issues: list[str]
    resolved_issues: list[str]


class AuditRunResponse(BaseModel):
    """Response for POST /audits."""

    audit: AuditResponse
    alerts_created: list[str]


class AuditHistoryItem(BaseModel):
    """Summary row for history list."""

    id: str
    target_url: str
    triggered_by: str
    timestamp: datetime
    overall: int
    score_change: int


# ---------------------------------------------------------------------------
# Alerts and rules
# ---------------------------------------------------------------------------


class AlertResponse(BaseModel):
    id: str
    rule_id: str
    alert_type: AlertType
    subject_key: str
    severity: Severity
    title: str
    message: str
    details: dict[str, Any]
    status: AlertStatus
    created_at: datetime | None
    acknowledged_at: datetime | None = None
    acknowledged_by: str | None = None


class AcknowledgeRequest(BaseModel):
    actor: str

    @field_validator("actor")
    @classmethod
    def validate_actor(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Actor is required")
        return normalized


class AlertRuleRequest(BaseModel):
    """Request body for POST /rules. The condition is checked per rule type."""

    user_id: str = ""
    type: AlertType
    condition: dict[str, Any]
    severity: Severity = Severity.MEDIUM
    enabled: bool = True


class AlertRuleResponse(BaseModel):
    id: str
    user_id: str
    type: AlertType
    condition: dict[str, Any]
    severity: Severity
    enabled: bool


class EnabledRequest(BaseModel):
    enabled: bool


# ---------------------------------------------------------------------------
# Preferences
# ---------------------------------------------------------------------------


class PreferencesPayload(BaseModel):
    """Body of PUT /preferences/{user_id} and response of GET."""

    email_enabled: bool = True
    address: str = ""
    immediate_alerts: bool = True
    daily_digest: bool = False
    weekly_digest: bool = True
    alert_type_toggles: dict[AlertType, bool] = Field(
        default_factory=lambda: {alert_type: True for alert_type in AlertType}
    )

    @field_validator("address")
    @classmethod
    def validate_address(cls, value: str) -> str:
        normalized = value.strip()
        if normalized and not EMAIL_PATTERN.match(normalized):
            raise ValueError("Invalid email format")
        return normalized


# ---------------------------------------------------------------------------
# Schedules
# ---------------------------------------------------------------------------


class ScheduleRequest(BaseModel):
    """Request body for POST /schedules."""

    user_id: str = ""
    name: str
    type: ScheduleType
    cron_expression: str
    config: dict[str, Any] = Field(default_factory=dict)
    enabled: bool = True

    @field_validator("name", "cron_expression", mode="before")
    @classmethod
    def normalize_text_fields(cls, value: object) -> str:
        text = str(value or "").strip()
        if not text:
            raise ValueError("Field is required")
        return text


class ScheduleResponse(BaseModel):
    id: str
    user_id: str
    name: str
    type: ScheduleType
    cron_expression: str
    config: dict[str, Any]
    enabled: bool
    last_run_at: datetime | None
    last_run_status: str
    run_count: int
    consecutive_failures: int
    last_error: str | None
    last_run_details: dict[str, Any]


# ---------------------------------------------------------------------------
# Integrations
# ---------------------------------------------------------------------------


class AuthorizeRequest(BaseModel):
    user_id: str

    @field_validator("user_id")
    @classmethod
    def validate_user(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("user_id is required")
        return normalized


class AuthorizeResponse(BaseModel):
    user_id: str
    state: str
    message: str = ""
