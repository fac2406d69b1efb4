"""Alert rule evaluation.

Turns a fresh audit record, tracked keywords and scheduler signals into
candidate Alerts. Nothing is persisted here; deduplication happens when
the lifecycle manager inserts the candidates.
"""

import logging
import uuid
from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime, timedelta, timezone

from pydantic import ValidationError

from models import (
    Alert,
    AlertRule,
    AlertType,
    AuditRecord,
    Category,
    Impact,
    Keyword,
    KeywordObservation,
    ScheduleType,
    Status,
    SyncSignal,
    Trend,
)
from schemas import (
    CONDITION_MODELS,
    FailureCondition,
    KeywordChangeCondition,
    ScoreDropCondition,
)

logger = logging.getLogger(__name__)


class RuleConditionError(ValueError):
    """An alert rule carries a condition that does not fit its type."""

    def __init__(self, rule_id: str, reason: str) -> None:
        super().__init__(f"Rule {rule_id}: {reason}")
        self.rule_id = rule_id
        self.reason = reason


def validate_condition(rule_type: AlertType, condition: Mapping, *, rule_id: str = "?"):
    """Parse `condition` with the model for `rule_type`; raise RuleConditionError on mismatch."""
    model = CONDITION_MODELS.get(rule_type)
    if model is None:
        raise RuleConditionError(rule_id, f"unknown rule type {rule_type!r}")
    if not isinstance(condition, Mapping):
        raise RuleConditionError(rule_id, "condition must be an object")
    try:
        return model.model_validate(dict(condition))
    except ValidationError as e:
        raise RuleConditionError(rule_id, str(e)) from e


def _candidate(
    rule: AlertRule,
    *,
    subject_key: str,
    title: str,
    message: str,
    details: dict,
    now: datetime,
    severity=None,
) -> Alert:
    return Alert(
        id=str(uuid.uuid4()),
        rule_id=rule.id,
        user_id=rule.user_id,
        alert_type=rule.type,
        subject_key=subject_key,
        severity=severity or rule.severity,
        title=title,
        message=message,
        details=details,
        created_at=now,
    )


def _score_drop(rule, cond: ScoreDropCondition, new_record, history, now) -> list[Alert]:
    if new_record is None:
        return []
    window_start = new_record.timestamp - timedelta(hours=cond.window_hours)
    baseline = None
    for record in sorted(history, key=lambda r: r.timestamp, reverse=True):
        if record.id == new_record.id or record.target_url != new_record.target_url:
            continue
        if window_start <= record.timestamp <= new_record.timestamp:
            baseline = record
            break
    if baseline is None:
        return []

    previous = getattr(baseline.scores, cond.category)
    current = getattr(new_record.scores, cond.category)
    drop = previous - current
    if drop < cond.threshold_points:
        return []
    label = cond.category.replace("_", "-")
    return [
        _candidate(
            rule,
            subject_key=f"{new_record.target_url}#{cond.category}",
            title=f"SEO score dropped by {drop} points",
            message=f"The {label} score for {new_record.target_url} fell from {previous} to {current}.",
            details={
                "target_url": new_record.target_url,
                "category": cond.category,
                "previous_score": previous,
                "current_score": current,
                "drop": drop,
                "baseline_audit_id": baseline.id,
                "audit_id": new_record.id,
            },
            now=now,
        )
    ]


def _trend_flips(observations: Sequence[KeywordObservation]) -> int:
    directions = [o.trend for o in observations if o.trend is not Trend.STABLE]
    return sum(1 for a, b in zip(directions, directions[1:]) if a is not b)


def _keyword_change(rule, cond: KeywordChangeCondition, keywords, keyword_history, now) -> list[Alert]:
    window_start = now - timedelta(hours=cond.window_hours)
    alerts: list[Alert] = []
    for kw in keywords:
        subject_key = f"{kw.target_url}#{kw.keyword}"
        recent = kw.updated_at is None or kw.updated_at >= window_start
        if recent and kw.previous_position is not None:
            delta = kw.position - kw.previous_position
            if abs(delta) >= cond.threshold_positions:
                direction = "improved" if delta < 0 else "dropped"
                alerts.append(
                    _candidate(
                        rule,
                        subject_key=subject_key,
                        title=f"Keyword '{kw.keyword}' {direction} {abs(delta)} positions",
                        message=(
                            f"'{kw.keyword}' moved from position {kw.previous_position} "
                            f"to {kw.position} for {kw.target_url}."
                        ),
                        details={
                            "keyword": kw.keyword,
                            "target_url": kw.target_url,
                            "previous_position": kw.previous_position,
                            "current_position": kw.position,
                            "change": delta,
                        },
                        now=now,
                    )
                )
                continue

        observations = [o for o in keyword_history.get(kw.keyword, []) if o.observed_at >= window_start]
        flips = _trend_flips(sorted(observations, key=lambda o: o.observed_at))
        if flips >= 2:
            alerts.append(
                _candidate(
                    rule,
                    subject_key=subject_key,
                    title=f"Keyword '{kw.keyword}' is fluctuating",
                    message=(
                        f"The ranking trend for '{kw.keyword}' reversed {flips} times "
                        f"in the last {cond.window_hours}h."
                    ),
                    details={
                        "keyword": kw.keyword,
                        "target_url": kw.target_url,
                        "trend_flips": flips,
                        "current_position": kw.position,
                    },
                    now=now,
                    severity=rule.severity.lowered(),
                )
            )
    return alerts


def _failure_signals(rule, cond: FailureCondition, signals, schedule_type, now) -> list[Alert]:
    alerts: list[Alert] = []
    for signal in signals:
        if signal.schedule_type is not schedule_type or not signal.error:
            continue
        if signal.consecutive_failures < cond.failure_threshold:
            continue
        alerts.append(
            _candidate(
                rule,
                subject_key=f"schedule:{signal.schedule_id}",
                title=f"Scheduled {schedule_type.value.replace('_', ' ')} keeps failing",
                message=(
                    f"{signal.consecutive_failures} consecutive failures for {signal.target}: {signal.error}"
                ),
                details={
                    "schedule_id": signal.schedule_id,
                    "target": signal.target,
                    "consecutive_failures": signal.consecutive_failures,
                    "last_error": signal.error,
                },
                now=now,
            )
        )
    return alerts


def _performance_findings(rule, new_record, now) -> list[Alert]:
    if new_record is None:
        return []
    alerts: list[Alert] = []
    for finding in new_record.findings:
        if finding.category is not Category.PERFORMANCE:
            continue
        if finding.status is not Status.FAILED or finding.impact is not Impact.HIGH:
            continue
        alerts.append(
            _candidate(
                rule,
                subject_key=f"{new_record.target_url}#{finding.item}",
                title=f"Performance issue: {finding.item}",
                message=finding.message,
                details={
                    "target_url": new_record.target_url,
                    "item": finding.item,
                    "fix": finding.fix,
                    "audit_id": new_record.id,
                },
                now=now,
            )
        )
    return alerts


def evaluate(
    new_record: AuditRecord | None,
    history: Iterable[AuditRecord],
    keywords: Iterable[Keyword],
    rules: Iterable[AlertRule],
    *,
    keyword_history: Mapping[str, Sequence[KeywordObservation]] | None = None,
    signals: Iterable[SyncSignal] = (),
    now: datetime | None = None,
) -> list[Alert]:
    """
    Evaluate every enabled rule and return candidate alerts.

    A rule whose condition is malformed is logged and skipped; the other
    rules still run.
    """
    history = list(history)
    keywords = list(keywords)
    signals = list(signals)
    keyword_history = keyword_history or {}
    if now is None:
        now = new_record.timestamp if new_record is not None else max(
            (s.occurred_at for s in signals), default=None
        )
    if now is None:
        now = datetime.now(timezone.utc)

    candidates: list[Alert] = []
    for rule in rules:
        if not rule.enabled:
            continue
        try:
            cond = validate_condition(rule.type, rule.condition, rule_id=rule.id)
            if rule.type is AlertType.SCORE_DROP:
                candidates.extend(_score_drop(rule, cond, new_record, history, now))
            elif rule.type is AlertType.KEYWORD_CHANGE:
                candidates.extend(_keyword_change(rule, cond, keywords, keyword_history, now))
            elif rule.type is AlertType.EXTERNAL_SOURCE_ISSUE:
                candidates.extend(_failure_signals(rule, cond, signals, ScheduleType.KEYWORD_SYNC, now))
            elif rule.type is AlertType.PERFORMANCE_ISSUE:
                candidates.extend(_failure_signals(rule, cond, signals, ScheduleType.AUDIT, now))
                candidates.extend(_performance_findings(rule, new_record, now))
        except RuleConditionError as e:
            logger.warning("Skipping alert rule %s: %s", rule.id, e.reason)
        except Exception:
            logger.exception("Alert rule %s failed during evaluation", rule.id)
    return candidates
