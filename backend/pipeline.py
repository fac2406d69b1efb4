"""Glue between runs (audits, keyword syncs, scheduler signals) and alerting."""

import logging
from datetime import timedelta

import alert_rules
import database
from alerts import AlertLifecycleManager
from audit_runner import SnapshotProvider, run_audit
from keyword_sync import RowFetcher, sync_keywords
from models import Alert, AuditRecord, Keyword, SyncSignal, TriggeredBy

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 50
KEYWORD_HISTORY_HOURS = 24 * 30


def _create(candidates: list[Alert], manager: AlertLifecycleManager | None) -> list[Alert]:
    return (manager or AlertLifecycleManager()).create(candidates)


def audit_and_alert(
    target_url: str,
    triggered_by: TriggeredBy = TriggeredBy.MANUAL,
    *,
    user_id: str = "",
    snapshot_provider: SnapshotProvider | None = None,
    manager: AlertLifecycleManager | None = None,
) -> tuple[AuditRecord, list[Alert]]:
    """Run one audit, then evaluate the user's rules against it."""
    record = run_audit(target_url, triggered_by, user_id=user_id, snapshot_provider=snapshot_provider)
    rules = database.list_alert_rules(user_id, enabled_only=True)
    if not rules:
        return record, []
    history = database.list_audit_records(target_url, limit=HISTORY_LIMIT)
    candidates = alert_rules.evaluate(record, history, [], rules)
    return record, _create(candidates, manager)


def sync_and_alert(
    user_id: str,
    site_url: str,
    *,
    fetch_rows: RowFetcher | None = None,
    manager: AlertLifecycleManager | None = None,
) -> tuple[list[Keyword], list[Alert]]:
    """Sync keywords from the provider, then evaluate keyword rules."""
    keywords = sync_keywords(user_id, site_url, fetch_rows=fetch_rows)
    rules = database.list_alert_rules(user_id, enabled_only=True)
    if not rules:
        return keywords, []
    now = database.utcnow()
    observations = database.list_keyword_observations(
        user_id, site_url, now - timedelta(hours=KEYWORD_HISTORY_HOURS)
    )
    candidates = alert_rules.evaluate(None, [], keywords, rules, keyword_history=observations, now=now)
    return keywords, _create(candidates, manager)


def alert_on_signal(
    signal: SyncSignal,
    user_id: str,
    *,
    manager: AlertLifecycleManager | None = None,
) -> list[Alert]:
    """Evaluate failure-driven rules against one scheduler outcome."""
    rules = database.list_alert_rules(user_id, enabled_only=True)
    if not rules:
        return []
    candidates = alert_rules.evaluate(None, [], [], rules, signals=[signal], now=signal.occurred_at)
    return _create(candidates, manager)
