"""Tests for alert lifecycle, deduplication and immediate dispatch."""

import itertools
import threading
import uuid

import pytest

import database
from alert_rules import evaluate
from alerts import AlertLifecycleManager, AlertNotFound, InvalidAlertState
from conftest import hours_ago, make_record
from models import Alert, AlertRule, AlertStatus, AlertType, NotificationPreferences, Severity


def _alert(subject_key="https://example.com/#overall", rule_id="rule-1", alert_type=AlertType.SCORE_DROP):
    return Alert(
        id=str(uuid.uuid4()),
        rule_id=rule_id,
        user_id="user-1",
        alert_type=alert_type,
        subject_key=subject_key,
        severity=Severity.HIGH,
        title="Score dropped",
        message="The overall score fell.",
        details={"drop": 15},
        created_at=database.utcnow(),
    )


@pytest.fixture
def manager(db):
    return AlertLifecycleManager()


def test_repeated_score_drops_create_one_active_alert(manager):
    rule = AlertRule("rule-1", AlertType.SCORE_DROP, {"threshold_points": 10, "window_hours": 24}, Severity.HIGH)
    baseline = make_record(85, timestamp=hours_ago(3))
    first = make_record(70, timestamp=hours_ago(2))
    second = make_record(72, timestamp=hours_ago(1))

    created = manager.create(evaluate(first, [baseline], [], [rule]))
    created += manager.create(evaluate(second, [baseline], [], [rule]))

    assert len(created) == 1
    assert len(database.list_alerts(status=AlertStatus.ACTIVE)) == 1


def test_concurrent_creates_keep_one_active_alert(manager):
    results = []

    def worker():
        results.extend(manager.create([_alert()]))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(results) == 1
    assert len(database.list_alerts(status=AlertStatus.ACTIVE)) == 1


def test_recurring_condition_after_dismiss_creates_fresh_alert(manager):
    [first] = manager.create([_alert()])
    manager.dismiss(first.id)

    [second] = manager.create([_alert()])

    assert second.id != first.id
    assert database.get_alert(first.id).status is AlertStatus.DISMISSED
    assert database.get_alert(second.id).status is AlertStatus.ACTIVE


def test_acknowledge_records_actor_and_time(manager):
    [alert] = manager.create([_alert()])
    acknowledged = manager.acknowledge(alert.id, "ops@example.com")
    assert acknowledged.status is AlertStatus.ACKNOWLEDGED
    assert acknowledged.acknowledged_by == "ops@example.com"
    assert acknowledged.acknowledged_at is not None


def test_acknowledged_alert_can_be_dismissed(manager):
    [alert] = manager.create([_alert()])
    manager.acknowledge(alert.id, "ops")
    assert manager.dismiss(alert.id).status is AlertStatus.DISMISSED


def test_unknown_alert_raises_not_found(manager):
    with pytest.raises(AlertNotFound):
        manager.acknowledge("missing", "ops")
    with pytest.raises(AlertNotFound):
        manager.dismiss("missing")


def test_acknowledging_twice_is_invalid(manager):
    [alert] = manager.create([_alert()])
    manager.acknowledge(alert.id, "ops")
    with pytest.raises(InvalidAlertState):
        manager.acknowledge(alert.id, "ops")


@pytest.mark.parametrize("actions", list(itertools.product(["ack", "dismiss"], repeat=3)))
def test_no_sequence_leaves_dismissed(manager, actions):
    [alert] = manager.create([_alert()])
    manager.dismiss(alert.id)
    for action in actions:
        with pytest.raises(InvalidAlertState):
            if action == "ack":
                manager.acknowledge(alert.id, "ops")
            else:
                manager.dismiss(alert.id)
    assert database.get_alert(alert.id).status is AlertStatus.DISMISSED


def test_creation_queues_immediate_notification(manager):
    database.save_preferences(NotificationPreferences(user_id="user-1", address="owner@example.com"))
    [alert] = manager.create([_alert()])

    queued = database.list_notifications()
    assert len(queued) == 1
    assert queued[0]["alert_id"] == alert.id
    assert queued[0]["address"] == "owner@example.com"
    assert queued[0]["template_kind"] == "immediate"


def test_no_notification_without_address_or_when_type_toggled_off(manager):
    manager.create([_alert(subject_key="a")])
    assert database.list_notifications() == []

    prefs = NotificationPreferences(user_id="user-1", address="owner@example.com")
    prefs.alert_type_toggles[AlertType.SCORE_DROP] = False
    database.save_preferences(prefs)
    manager.create([_alert(subject_key="b")])
    assert database.list_notifications() == []


def test_no_notification_when_immediate_alerts_disabled(manager):
    database.save_preferences(
        NotificationPreferences(user_id="user-1", address="owner@example.com", immediate_alerts=False)
    )
    manager.create([_alert()])
    assert database.list_notifications() == []


def test_preferences_created_lazily_with_defaults(db):
    prefs = database.get_or_create_preferences("new-user")
    assert prefs.email_enabled is True
    assert prefs.immediate_alerts is True
    assert prefs.daily_digest is False
    assert prefs.weekly_digest is True
    assert all(prefs.alert_type_toggles.values())
    assert database.get_or_create_preferences("new-user") == prefs
    assert len(database.list_preferences()) == 1
