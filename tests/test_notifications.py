"""Tests for the notification queue, digests and email rendering."""

from datetime import datetime, timedelta, timezone

import pytest

import database
import mailer
from conftest import make_record
from models import Alert, AlertType, NotificationPreferences, Severity
from notifications import process_notification_queue, send_digests

NOW = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)


class RecordingSender:
    def __init__(self, result=True):
        self.result = result
        self.calls = []

    def __call__(self, address, template_kind, payload):
        self.calls.append((address, template_kind, payload))
        return self.result


def _stored_alert(alert_id, *, created_at, user_id="user-1", alert_type=AlertType.SCORE_DROP):
    alert = Alert(
        id=alert_id,
        rule_id="rule-1",
        severity=Severity.HIGH,
        title=f"Alert {alert_id}",
        message="Something changed.",
        subject_key=f"https://example.com/#{alert_id}",
        alert_type=alert_type,
        created_at=created_at,
        user_id=user_id,
    )
    assert database.insert_alert_if_absent(alert)
    return alert


def test_queue_marks_rows_sent(db):
    database.enqueue_notification(
        user_id="user-1", address="owner@example.com", template_kind="immediate", payload={"title": "x"}
    )
    sender = RecordingSender()

    assert process_notification_queue(sender=sender) == {"sent": 1, "failed": 0}
    assert sender.calls == [("owner@example.com", "immediate", {"title": "x"})]
    assert database.list_notifications() == []
    assert len(database.list_notifications(status="sent")) == 1


def test_queue_failures_are_marked_and_not_retried(db):
    database.enqueue_notification(
        user_id="user-1", address="owner@example.com", template_kind="immediate", payload={}
    )
    sender = RecordingSender(result=False)

    assert process_notification_queue(sender=sender) == {"sent": 0, "failed": 1}
    assert process_notification_queue(sender=sender) == {"sent": 0, "failed": 0}
    [row] = database.list_notifications(status="failed")
    assert row["error_message"]


def test_weekly_digest_covers_window_and_respects_toggles(db):
    prefs = NotificationPreferences(user_id="user-1", address="owner@example.com")
    prefs.alert_type_toggles[AlertType.KEYWORD_CHANGE] = False
    database.save_preferences(prefs)
    database.insert_audit_record(make_record(81, timestamp=NOW - timedelta(days=1)))
    _stored_alert("recent", created_at=NOW - timedelta(days=2))
    _stored_alert("old", created_at=NOW - timedelta(days=9))
    _stored_alert("muted", created_at=NOW - timedelta(days=1), alert_type=AlertType.KEYWORD_CHANGE)
    sender = RecordingSender()

    assert send_digests("weekly_digest", NOW, sender=sender) == 1

    [(address, kind, payload)] = sender.calls
    assert address == "owner@example.com"
    assert kind == "weekly_digest"
    assert [a["id"] for a in payload["alerts"]] == ["recent"]
    assert payload["latest_score"] == 81
    assert payload["period_end"] == NOW
    assert payload["period_start"] == NOW - timedelta(days=7)


def test_weekly_digest_includes_every_alert_in_window(db):
    database.save_preferences(NotificationPreferences(user_id="user-1", address="owner@example.com"))
    for i in range(130):
        _stored_alert(f"a{i}", created_at=NOW - timedelta(hours=1, minutes=i))
    sender = RecordingSender()

    assert send_digests("weekly_digest", NOW, sender=sender) == 1

    [(_, _, payload)] = sender.calls
    assert len(payload["alerts"]) == 130


def test_daily_digest_is_off_by_default(db):
    database.save_preferences(NotificationPreferences(user_id="user-1", address="owner@example.com"))
    sender = RecordingSender()
    assert send_digests("daily_digest", NOW, sender=sender) == 0
    assert sender.calls == []


def test_digest_skips_users_without_address_or_with_email_off(db):
    database.save_preferences(NotificationPreferences(user_id="no-address"))
    database.save_preferences(
        NotificationPreferences(user_id="muted", address="m@example.com", email_enabled=False)
    )
    sender = RecordingSender()
    assert send_digests("weekly_digest", NOW, sender=sender) == 0


def test_unknown_digest_kind_is_rejected(db):
    with pytest.raises(ValueError):
        send_digests("monthly_digest", NOW)


def test_send_notification_without_credentials_returns_false(monkeypatch):
    monkeypatch.setenv("SMTP_USERNAME", "")
    monkeypatch.setenv("SMTP_PASSWORD", "")
    assert mailer.send_notification("owner@example.com", "immediate", {"title": "x"}) is False


def test_render_immediate_and_digest():
    subject, text, html = mailer.render(
        "immediate", {"severity": "high", "title": "Score dropped", "message": "Down 15", "details": {"drop": 15}}
    )
    assert subject == "[HIGH] Score dropped"
    assert "drop: 15" in text
    assert "<h2" in html

    subject, text, _ = mailer.render(
        "daily_digest", {"alerts": [{"severity": "low", "title": "Flapping"}], "latest_score": 90, "keyword_count": 4}
    )
    assert subject == "Your Daily SEO Summary"
    assert "Latest SEO score: 90/100" in text
    assert "- [low] Flapping" in text

    with pytest.raises(ValueError):
        mailer.render("sms", {})
