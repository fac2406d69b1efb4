"""Runs one audit: snapshot -> checks -> scores -> persisted AuditRecord."""

import logging
import uuid
from collections.abc import Callable

import checks
import database
import scoring
from models import AuditRecord, Finding, PageSnapshot, Status, TriggeredBy
from scraper import SnapshotUnavailable, fetch_snapshot

logger = logging.getLogger(__name__)

SnapshotProvider = Callable[[str], PageSnapshot]

_ISSUE_STATUSES = (Status.FAILED, Status.WARNING)


def _issue_items(findings: tuple[Finding, ...]) -> list[str]:
    return list(dict.fromkeys(f.item for f in findings if f.status in _ISSUE_STATUSES))


def run_audit(
    target_url: str,
    triggered_by: TriggeredBy = TriggeredBy.MANUAL,
    *,
    user_id: str = "",
    snapshot_provider: SnapshotProvider | None = None,
) -> AuditRecord:
    """
    Audit `target_url` and append the result to its history.

    Raises SnapshotUnavailable when the page cannot be inspected; nothing
    is persisted in that case. No retries happen here.
    """
    provider = snapshot_provider or fetch_snapshot
    snapshot = provider(target_url)
    if not snapshot:
        raise SnapshotUnavailable(target_url, "provider returned no snapshot")

    findings = tuple(checks.run_all(snapshot))
    scores = scoring.score(findings)

    previous = database.latest_audit_record(target_url)
    score_change = 0
    new_issues: list[str] = []
    resolved_issues: list[str] = []
    if previous is not None:
        score_change = scores.overall - previous.scores.overall
        before = set(_issue_items(previous.findings))
        after = _issue_items(findings)
        new_issues = [item for item in after if item not in before]
        resolved_issues = [item for item in _issue_items(previous.findings) if item not in set(after)]

    record = AuditRecord(
        id=str(uuid.uuid4()),
        user_id=user_id,
        target_url=target_url,
        triggered_by=triggered_by,
        timestamp=database.utcnow(),
        findings=findings,
        scores=scores,
        totals=scoring.totals(findings),
        score_change=score_change,
        new_issues=tuple(new_issues),
        resolved_issues=tuple(resolved_issues),
    )
    database.insert_audit_record(record)
    logger.info(
        "Audit %s persisted for %s: overall=%d (%+d), %d findings",
        record.id,
        target_url,
        scores.overall,
        score_change,
        len(findings),
    )
    return record
