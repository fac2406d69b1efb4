"""Cron-driven monitoring schedules.

Each MonitoringSchedule runs either an audit or a keyword sync when its
cron expression comes due. Runs of the same schedule never overlap; a
failed run is recorded and left enabled, and repeated failures are handed
to the failure-driven alert rules.
"""

import logging
import os
import threading
import time
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from dotenv import load_dotenv

import database
import notifications
import pipeline
from alerts import AlertLifecycleManager
from audit_runner import SnapshotProvider
from keyword_sync import RowFetcher
from models import MonitoringSchedule, RunStatus, ScheduleType, SyncSignal, TriggeredBy

load_dotenv(dotenv_path=Path(__file__).resolve().parent / ".env")

logger = logging.getLogger(__name__)

SCHEDULER_TICK_SECONDS = int(os.getenv("SCHEDULER_TICK_SECONDS", "60"))


def parse_cron(expression: str) -> CronTrigger:
    """Parse a standard 5-field crontab expression; raises ValueError."""
    if len(expression.split()) != 5:
        raise ValueError(f"Invalid cron expression: {expression}")
    return CronTrigger.from_crontab(expression, timezone=timezone.utc)


def is_due(schedule: MonitoringSchedule, now: datetime, *, window_seconds: int = SCHEDULER_TICK_SECONDS) -> bool:
    """
    True when a fire time of the schedule's cron falls after its last run
    (or within the last tick window for a schedule that never ran) and
    not after `now`.
    """
    trigger = parse_cron(schedule.cron_expression)
    if schedule.last_run_at is not None:
        anchor = schedule.last_run_at + timedelta(seconds=1)
    else:
        anchor = now - timedelta(seconds=window_seconds)
    next_fire = trigger.get_next_fire_time(None, anchor)
    return next_fire is not None and next_fire <= now


class SyncScheduler:
    def __init__(
        self,
        *,
        snapshot_provider: SnapshotProvider | None = None,
        row_fetcher_for: Callable[[MonitoringSchedule], RowFetcher] | None = None,
        manager: AlertLifecycleManager | None = None,
    ) -> None:
        self._snapshot_provider = snapshot_provider
        self._row_fetcher_for = row_fetcher_for
        self._manager = manager
        self._lock = threading.Lock()
        self._running: set[str] = set()
        self._scheduler: BackgroundScheduler | None = None

    def is_running(self, schedule_id: str) -> bool:
        with self._lock:
            return schedule_id in self._running

    def tick(
        self,
        schedule: MonitoringSchedule,
        now: datetime | None = None,
        *,
        force: bool = False,
    ) -> RunStatus | None:
        """
        Run `schedule` if it is enabled and due (or `force` is set).
        Returns the run status, or None when the run was skipped.
        """
        now = now or database.utcnow()
        if not force:
            if not schedule.enabled:
                return None
            try:
                if not is_due(schedule, now):
                    return None
            except ValueError as e:
                logger.warning("Schedule %s has an invalid cron expression: %s", schedule.id, e)
                return None

        with self._lock:
            if schedule.id in self._running:
                logger.warning("Schedule %s is already running, skipping", schedule.id)
                return None
            self._running.add(schedule.id)

        try:
            return self._execute(schedule, now)
        finally:
            with self._lock:
                self._running.discard(schedule.id)

    def _execute(self, schedule: MonitoringSchedule, now: datetime) -> RunStatus:
        logger.info("Executing schedule: %s (ID: %s)", schedule.name, schedule.id)
        started = time.monotonic()
        target = ""
        try:
            if schedule.type is ScheduleType.AUDIT:
                target = str(schedule.config.get("url") or "")
                if not target:
                    raise ValueError("audit schedule has no 'url' in its config")
                record, created = pipeline.audit_and_alert(
                    target,
                    TriggeredBy.SCHEDULED,
                    user_id=schedule.user_id,
                    snapshot_provider=self._snapshot_provider,
                    manager=self._manager,
                )
                details = {
                    "audit_id": record.id,
                    "score": record.scores.overall,
                    "score_change": record.score_change,
                    "alerts_created": len(created),
                }
            else:
                target = str(schedule.config.get("site_url") or "")
                if not target:
                    raise ValueError("keyword sync schedule has no 'site_url' in its config")
                fetch_rows = self._row_fetcher_for(schedule) if self._row_fetcher_for else None
                keywords, created = pipeline.sync_and_alert(
                    schedule.user_id,
                    target,
                    fetch_rows=fetch_rows,
                    manager=self._manager,
                )
                details = {"keywords_synced": len(keywords), "alerts_created": len(created)}
        except Exception as e:
            logger.warning("Schedule %s failed: %s", schedule.id, e)
            schedule.last_run_at = now
            schedule.last_run_status = RunStatus.FAILED
            schedule.run_count += 1
            schedule.consecutive_failures += 1
            schedule.last_error = str(e)
            schedule.last_run_details = {"execution_time_ms": int((time.monotonic() - started) * 1000)}
            database.record_schedule_run(schedule)
            self._signal_failure(schedule, target, now)
            return RunStatus.FAILED

        details["execution_time_ms"] = int((time.monotonic() - started) * 1000)
        schedule.last_run_at = now
        schedule.last_run_status = RunStatus.SUCCESS
        schedule.run_count += 1
        schedule.consecutive_failures = 0
        schedule.last_error = None
        schedule.last_run_details = details
        database.record_schedule_run(schedule)
        logger.info("Schedule %s completed: %s", schedule.id, details)
        return RunStatus.SUCCESS

    def _signal_failure(self, schedule: MonitoringSchedule, target: str, now: datetime) -> None:
        signal = SyncSignal(
            schedule_id=schedule.id,
            schedule_type=schedule.type,
            target=target or schedule.name,
            error=schedule.last_error,
            consecutive_failures=schedule.consecutive_failures,
            occurred_at=now,
        )
        try:
            pipeline.alert_on_signal(signal, schedule.user_id, manager=self._manager)
        except Exception:
            logger.exception("Failed to evaluate failure alerts for schedule %s", schedule.id)

    def tick_all(self, now: datetime | None = None) -> dict[str, RunStatus]:
        """Tick every enabled schedule; returns the status of those that ran."""
        now = now or database.utcnow()
        results: dict[str, RunStatus] = {}
        for schedule in database.list_schedules(enabled_only=True):
            try:
                status = self.tick(schedule, now)
            except Exception:
                logger.exception("Error ticking schedule %s", schedule.id)
                continue
            if status is not None:
                results[schedule.id] = status
        return results

    def start(self, interval_seconds: int = SCHEDULER_TICK_SECONDS) -> None:
        """Start background ticking plus the notification and digest jobs."""
        if self._scheduler is not None:
            return
        logger.info("Starting monitoring scheduler (tick every %ss)", interval_seconds)
        scheduler = BackgroundScheduler(timezone=timezone.utc)
        scheduler.add_job(
            self.tick_all,
            "interval",
            seconds=interval_seconds,
            id="monitoring_tick",
            max_instances=1,
            coalesce=True,
        )
        scheduler.add_job(
            notifications.process_notification_queue,
            "interval",
            seconds=interval_seconds,
            id="notification_queue",
            max_instances=1,
            coalesce=True,
        )
        scheduler.add_job(
            notifications.send_digests,
            parse_cron("0 8 * * *"),
            args=["daily_digest"],
            id="daily_digest",
            max_instances=1,
        )
        scheduler.add_job(
            notifications.send_digests,
            parse_cron("0 8 * * mon"),
            args=["weekly_digest"],
            id="weekly_digest",
            max_instances=1,
        )
        scheduler.start()
        self._scheduler = scheduler

    def stop(self) -> None:
        if self._scheduler is None:
            return
        logger.info("Stopping monitoring scheduler")
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
