"""Notification queue drain and daily/weekly digest batch job."""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

import database
from mailer import send_notification

logger = logging.getLogger(__name__)

Sender = Callable[[str, str, dict], bool]

DIGEST_WINDOWS = {
    "daily_digest": timedelta(hours=24),
    "weekly_digest": timedelta(days=7),
}


def process_notification_queue(*, sender: Sender = send_notification, limit: int = 100) -> dict[str, int]:
    """Deliver pending notifications once each. Failed rows are not retried."""
    sent = failed = 0
    for row in database.list_notifications(status="pending", limit=limit):
        if sender(row["address"], row["template_kind"], row["payload"]):
            database.mark_notification(row["id"], "sent")
            sent += 1
        else:
            database.mark_notification(row["id"], "failed", "dispatcher reported failure")
            failed += 1
    if sent or failed:
        logger.info("Notification queue processed: %d sent, %d failed", sent, failed)
    return {"sent": sent, "failed": failed}


def send_digests(kind: str, now: datetime | None = None, *, sender: Sender = send_notification) -> int:
    """
    Send one digest per user who enabled `kind` ("daily_digest" or
    "weekly_digest"), covering alerts created within the digest window.
    Returns how many digests were dispatched.
    """
    if kind not in DIGEST_WINDOWS:
        raise ValueError(f"Unknown digest kind: {kind}")
    now = now or database.utcnow()
    since = now - DIGEST_WINDOWS[kind]

    dispatched = 0
    for prefs in database.list_preferences():
        enabled = prefs.daily_digest if kind == "daily_digest" else prefs.weekly_digest
        if not (prefs.email_enabled and enabled and prefs.address):
            continue
        alerts = [
            a
            for a in database.list_alerts(user_id=prefs.user_id, since=since, limit=None)
            if prefs.wants(a.alert_type) and a.created_at is not None and a.created_at <= now
        ]
        payload = {
            "alerts": [
                {
                    "id": a.id,
                    "title": a.title,
                    "severity": a.severity.value,
                    "status": a.status.value,
                    "created_at": a.created_at,
                }
                for a in alerts
            ],
            "latest_score": database.latest_overall_score(prefs.user_id),
            "keyword_count": len(database.list_keywords(prefs.user_id)),
            "period_start": since,
            "period_end": now,
        }
        if sender(prefs.address, kind, payload):
            dispatched += 1
        else:
            logger.warning("Digest %s for user %s was not delivered", kind, prefs.user_id)
    logger.info("%s: %d digests dispatched", kind, dispatched)
    return dispatched
