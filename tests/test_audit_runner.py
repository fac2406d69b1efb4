"""Tests for the audit runner and audit history."""

import pytest

import database
from audit_runner import run_audit
from models import Status, TriggeredBy
from scraper import SnapshotUnavailable


def test_run_audit_persists_record(db, good_snapshot):
    record = run_audit(
        "https://example.com/",
        TriggeredBy.MANUAL,
        user_id="user-1",
        snapshot_provider=lambda url: good_snapshot,
    )

    stored = database.get_audit_record(record.id)
    assert stored == record
    assert record.totals.checked == len(record.findings)
    assert record.score_change == 0
    assert record.new_issues == ()


def test_snapshot_failure_persists_nothing(db):
    def unavailable(url):
        raise SnapshotUnavailable(url, "timeout")

    with pytest.raises(SnapshotUnavailable):
        run_audit("https://example.com/", snapshot_provider=unavailable)
    assert database.list_audit_records("https://example.com/") == []


def test_history_is_append_only_and_newest_first(db, good_snapshot):
    first = run_audit("https://example.com/", snapshot_provider=lambda url: good_snapshot)
    second = run_audit("https://example.com/", TriggeredBy.SCHEDULED, snapshot_provider=lambda url: good_snapshot)

    history = database.list_audit_records("https://example.com/")
    assert [r.id for r in history] == [second.id, first.id]
    assert database.get_audit_record(first.id) == first


def test_second_run_reports_score_change_and_issue_diff(db, good_snapshot):
    run_audit("https://example.com/", snapshot_provider=lambda url: good_snapshot)
    degraded = {**good_snapshot, "title": "", "headers": {}}
    record = run_audit("https://example.com/", snapshot_provider=lambda url: degraded)

    assert record.score_change < 0
    assert "Title Tag" in record.new_issues
    assert "HSTS" in record.new_issues

    recovered = run_audit("https://example.com/", snapshot_provider=lambda url: good_snapshot)
    assert recovered.score_change == -record.score_change
    assert "Title Tag" in recovered.resolved_issues


def test_findings_order_is_stable_across_runs(db, good_snapshot):
    first = run_audit("https://example.com/", snapshot_provider=lambda url: good_snapshot)
    second = run_audit("https://example.com/", snapshot_provider=lambda url: good_snapshot)
    assert [f.item for f in first.findings] == [f.item for f in second.findings]
    assert first.scores == second.scores
    assert all(f.status is not Status.FAILED for f in first.findings)
