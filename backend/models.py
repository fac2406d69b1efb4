"""Data models and types used across the backend.

Database table definitions are in database.py.
API request/response schemas live in schemas.py.
The scraper produces a PageSnapshot; everything downstream works on the
frozen dataclasses below.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, TypedDict


class Category(str, Enum):
    TECHNICAL = "technical"
    ON_PAGE = "on_page"
    PERFORMANCE = "performance"
    MOBILE = "mobile"
    SECURITY = "security"
    CONTENT = "content"


class Status(str, Enum):
    PASSED = "passed"
    WARNING = "warning"
    FAILED = "failed"
    INFO = "info"


class Impact(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class TriggeredBy(str, Enum):
    MANUAL = "manual"
    SCHEDULED = "scheduled"


class Trend(str, Enum):
    UP = "up"
    DOWN = "down"
    STABLE = "stable"


class AlertType(str, Enum):
    SCORE_DROP = "score_drop"
    KEYWORD_CHANGE = "keyword_change"
    EXTERNAL_SOURCE_ISSUE = "external_source_issue"
    PERFORMANCE_ISSUE = "performance_issue"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    def lowered(self) -> "Severity":
        """Return the next tier down, bottoming out at LOW."""
        order = list(Severity)
        return order[max(0, order.index(self) - 1)]


class AlertStatus(str, Enum):
    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    DISMISSED = "dismissed"


class ScheduleType(str, Enum):
    AUDIT = "audit"
    KEYWORD_SYNC = "keyword_sync"


class RunStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class ImageInfo(TypedDict):
    src: str
    alt: str | None
    width: int | None
    height: int | None


class LinkInfo(TypedDict):
    href: str
    rel: str
    text: str
    internal: bool


class ScriptInfo(TypedDict):
    src: str | None
    is_async: bool
    defer: bool
    type: str


class PageSnapshot(TypedDict):
    """Structured output from the page scraper.

    Render-only values (load_time_ms, body_font_size_px,
    small_touch_targets) are None when the page was fetched without a
    browser.
    """

    url: str
    http_status: int
    response_time_ms: int
    load_time_ms: int | None
    headers: dict[str, str]
    lang: str
    charset: str
    title: str
    meta: dict[str, str]
    canonical_url: str | None
    has_favicon: bool
    hreflang_tags: list[str]
    headings: dict[str, list[str]]
    images: list[ImageInfo]
    links: list[LinkInfo]
    scripts: list[ScriptInfo]
    stylesheets: list[str]
    structured_data_types: list[str]
    structured_data_count: int
    insecure_resources: list[str]
    interactive_total: int
    interactive_labelled: int
    word_count: int
    html_bytes: int
    text_bytes: int
    body_font_size_px: float | None
    small_touch_targets: int | None


@dataclass(frozen=True)
class Finding:
    category: Category
    item: str
    status: Status
    impact: Impact
    message: str
    fix: str | None = None


@dataclass(frozen=True)
class CategoryScores:
    technical: int
    on_page: int
    performance: int
    mobile: int
    accessibility: int
    overall: int


@dataclass(frozen=True)
class AuditTotals:
    checked: int
    passed: int
    warned: int
    failed: int


@dataclass(frozen=True)
class AuditRecord:
    id: str
    target_url: str
    triggered_by: TriggeredBy
    timestamp: datetime
    findings: tuple[Finding, ...]
    scores: CategoryScores
    totals: AuditTotals
    user_id: str = ""
    score_change: int = 0
    new_issues: tuple[str, ...] = ()
    resolved_issues: tuple[str, ...] = ()


@dataclass(frozen=True)
class ExternalMetrics:
    impressions: int
    clicks: int
    ctr: float


@dataclass
class Keyword:
    """Tracked keyword; position and trend are rewritten on every sync."""

    keyword: str
    target_url: str
    position: int
    volume: int = 0
    difficulty: int = 0
    trend: Trend = Trend.STABLE
    previous_position: int | None = None
    external_metrics: ExternalMetrics | None = None
    user_id: str = ""
    updated_at: datetime | None = None


@dataclass(frozen=True)
class KeywordObservation:
    keyword: str
    target_url: str
    position: int
    trend: Trend
    observed_at: datetime
    user_id: str = ""


@dataclass(frozen=True)
class AlertRule:
    id: str
    type: AlertType
    condition: dict[str, Any]
    severity: Severity
    enabled: bool = True
    user_id: str = ""


@dataclass(frozen=True)
class Alert:
    id: str
    rule_id: str
    severity: Severity
    title: str
    message: str
    subject_key: str
    alert_type: AlertType
    details: dict[str, Any] = field(default_factory=dict)
    status: AlertStatus = AlertStatus.ACTIVE
    created_at: datetime | None = None
    acknowledged_at: datetime | None = None
    acknowledged_by: str | None = None
    user_id: str = ""


@dataclass(frozen=True)
class SyncSignal:
    """Outcome of a scheduled job, fed to the failure-driven alert rules."""

    schedule_id: str
    schedule_type: ScheduleType
    target: str
    error: str | None
    consecutive_failures: int
    occurred_at: datetime


@dataclass
class MonitoringSchedule:
    id: str
    name: str
    type: ScheduleType
    cron_expression: str
    config: dict[str, Any] = field(default_factory=dict)
    enabled: bool = True
    last_run_at: datetime | None = None
    last_run_status: RunStatus = RunStatus.PENDING
    user_id: str = ""
    run_count: int = 0
    consecutive_failures: int = 0
    last_error: str | None = None
    last_run_details: dict[str, Any] = field(default_factory=dict)


@dataclass
class NotificationPreferences:
    user_id: str
    email_enabled: bool = True
    address: str = ""
    immediate_alerts: bool = True
    daily_digest: bool = False
    weekly_digest: bool = True
    alert_type_toggles: dict[AlertType, bool] = field(
        default_factory=lambda: {alert_type: True for alert_type in AlertType}
    )

    def wants(self, alert_type: AlertType) -> bool:
        return self.alert_type_toggles.get(alert_type, True)
