"""Alert lifecycle: creation with dedup, acknowledge/dismiss, immediate dispatch."""

import logging
from collections.abc import Iterable

import database
from models import Alert, AlertStatus

logger = logging.getLogger(__name__)


class AlertLifecycleError(Exception):
    """Base class for recoverable alert state errors."""


class AlertNotFound(AlertLifecycleError):
    def __init__(self, alert_id: str) -> None:
        super().__init__(f"Alert {alert_id} not found")
        self.alert_id = alert_id


class InvalidAlertState(AlertLifecycleError):
    def __init__(self, alert_id: str, status: AlertStatus, action: str) -> None:
        super().__init__(f"Cannot {action} alert {alert_id} in status {status.value}")
        self.alert_id = alert_id
        self.status = status
        self.action = action


class AlertLifecycleManager:
    """
    Owns every Alert status change.

    Active -> Acknowledged, Active -> Dismissed, Acknowledged -> Dismissed.
    Dismissed is terminal; a recurring condition creates a fresh Alert.
    """

    def create(self, candidates: Iterable[Alert]) -> list[Alert]:
        """Persist candidates that have no Active twin and dispatch them."""
        created: list[Alert] = []
        for candidate in candidates:
            if not database.insert_alert_if_absent(candidate):
                logger.debug(
                    "Active alert already exists for rule %s / %s",
                    candidate.rule_id,
                    candidate.subject_key,
                )
                continue
            logger.info("Alert %s created: %s", candidate.id, candidate.title)
            created.append(candidate)
            self._dispatch(candidate)
        return created

    def acknowledge(self, alert_id: str, actor: str) -> Alert:
        return self._transition(
            alert_id,
            action="acknowledge",
            from_statuses=(AlertStatus.ACTIVE,),
            to_status=AlertStatus.ACKNOWLEDGED,
            actor=actor,
        )

    def dismiss(self, alert_id: str) -> Alert:
        return self._transition(
            alert_id,
            action="dismiss",
            from_statuses=(AlertStatus.ACTIVE, AlertStatus.ACKNOWLEDGED),
            to_status=AlertStatus.DISMISSED,
        )

    def _transition(self, alert_id, *, action, from_statuses, to_status, actor=None) -> Alert:
        current = database.get_alert(alert_id)
        if current is None:
            raise AlertNotFound(alert_id)
        if current.status not in from_statuses:
            raise InvalidAlertState(alert_id, current.status, action)

        # Conditional update; loses cleanly to a concurrent transition.
        if not database.transition_alert(
            alert_id,
            from_statuses=from_statuses,
            to_status=to_status,
            actor=actor,
            at=database.utcnow(),
        ):
            latest = database.get_alert(alert_id)
            raise InvalidAlertState(alert_id, latest.status if latest else current.status, action)

        logger.info("Alert %s %s", alert_id, to_status.value)
        return database.get_alert(alert_id)

    def _dispatch(self, alert: Alert) -> None:
        prefs = database.get_or_create_preferences(alert.user_id)
        if not (prefs.email_enabled and prefs.immediate_alerts and prefs.address):
            return
        if not prefs.wants(alert.alert_type):
            return
        database.enqueue_notification(
            user_id=alert.user_id,
            alert_id=alert.id,
            address=prefs.address,
            template_kind="immediate",
            payload={
                "alert_id": alert.id,
                "alert_type": alert.alert_type.value,
                "severity": alert.severity.value,
                "title": alert.title,
                "message": alert.message,
                "details": alert.details,
                "created_at": alert.created_at,
            },
        )
        logger.info("Queued immediate notification for alert %s", alert.id)
