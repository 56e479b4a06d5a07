from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Callable, List

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.date import DateTrigger

from prayerkeeper.notifications import NotificationRegistration


Deliver = Callable[[NotificationRegistration], None]

JOB_PREFIX = "alert_"


@dataclass
class ApschedulerAlertMechanism:
    """One-shot alerts as APScheduler date jobs, one job per notification id."""

    scheduler: BaseScheduler
    deliver: Deliver
    misfire_grace_seconds: int = 300

    def __post_init__(self) -> None:
        self._logger = logging.getLogger(self.__class__.__name__)

    def schedule_one_shot(
        self, notification_id: int, title: str, body: str, fire_at: datetime
    ) -> None:
        registration = NotificationRegistration(
            id=notification_id, title=title, body=body, fire_at=fire_at
        )
        # replace_existing gives us supersede-by-id instead of duplicates.
        self.scheduler.add_job(
            self._fire,
            trigger=DateTrigger(run_date=fire_at),
            id=self._job_id(notification_id),
            args=[registration],
            replace_existing=True,
            misfire_grace_time=self.misfire_grace_seconds,
            coalesce=True,
            max_instances=1,
        )

    def cancel(self, notification_id: int) -> None:
        job_id = self._job_id(notification_id)
        try:
            self.scheduler.remove_job(job_id)
        except JobLookupError:
            # Already fired or never registered.
            return
        self._logger.info("Cancelled alert %s", job_id)

    def active_registrations(self) -> List[NotificationRegistration]:
        registrations = [
            job.args[0]
            for job in self.scheduler.get_jobs()
            if job.id.startswith(JOB_PREFIX) and job.args
        ]
        return sorted(registrations, key=lambda item: item.id)

    def _fire(self, registration: NotificationRegistration) -> None:
        try:
            self.deliver(registration)
        except Exception:
            self._logger.exception("Delivery failed for alert %s", registration.id)

    def _job_id(self, notification_id: int) -> str:
        return f"{JOB_PREFIX}{notification_id}"
