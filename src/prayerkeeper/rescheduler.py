"""Recurring background jobs that keep notifications registered.

Two independent jobs are registered with the job runner: one refreshes the
five prayer notifications once a day, the other refreshes the tasbih reminder
twice a day. Every run reloads persisted settings and rebuilds its
registrations from scratch, so a run never depends on state left behind by
an earlier one and repeated runs converge on the same registrations.
"""

from __future__ import annotations

from datetime import datetime, timedelta
import logging
from typing import Optional, Tuple

from prayerkeeper.job_runner import (
    BackoffPolicy,
    JobBody,
    JobConstraints,
    JobResult,
    JobRunner,
    PeriodicJobSpec,
)
from prayerkeeper.notifications import NotificationScheduler
from prayerkeeper.prayer_cache import PrayerTimesCache
from prayerkeeper.prayer_times import Coordinates, PrayerTimeService
from prayerkeeper.settings import SettingsRepository


PRAYER_JOB_NAME = "reschedule_notifications"
REMINDER_JOB_NAME = "reschedule_tesbih_reminder"

PRAYER_JOB_SPEC = PeriodicJobSpec(
    name=PRAYER_JOB_NAME,
    period=timedelta(hours=24),
    initial_delay=timedelta(hours=1),
    backoff=BackoffPolicy(step=timedelta(hours=1)),
    constraints=JobConstraints(),
)

REMINDER_JOB_SPEC = PeriodicJobSpec(
    name=REMINDER_JOB_NAME,
    period=timedelta(hours=12),
    initial_delay=timedelta(minutes=30),
    backoff=BackoffPolicy(step=timedelta(hours=1)),
    constraints=JobConstraints(),
)


class PeriodicRescheduler:
    def __init__(
        self,
        *,
        job_runner: JobRunner,
        settings: SettingsRepository,
        prayer_service: PrayerTimeService,
        cache: PrayerTimesCache,
        notifications: NotificationScheduler,
        default_coordinates: Optional[Coordinates] = None,
        prefetch_days: int = 0,
    ) -> None:
        self._job_runner = job_runner
        self._settings = settings
        self._prayer_service = prayer_service
        self._cache = cache
        self._notifications = notifications
        self._default_coordinates = default_coordinates
        self._prefetch_days = prefetch_days
        self._logger = logging.getLogger(self.__class__.__name__)

    def initialize(self) -> None:
        # Replace-on-register keeps one timer per name however often we start.
        self._job_runner.register_periodic(PRAYER_JOB_SPEC, self.run_prayer_refresh_job)
        self._job_runner.register_periodic(
            REMINDER_JOB_SPEC, self.run_reminder_refresh_job
        )
        self._logger.info("Periodic notification refresh jobs registered")

    def cancel_all(self) -> None:
        self._job_runner.cancel(PRAYER_JOB_NAME)
        self._job_runner.cancel(REMINDER_JOB_NAME)
        self._logger.info("All notification refresh jobs cancelled")

    def force_reschedule_now(self) -> Tuple[JobResult, JobResult]:
        prayer_result = self.run_prayer_refresh_job()
        reminder_result = self.run_reminder_refresh_job()
        self._logger.info(
            "Forced reschedule finished: prayers=%s reminder=%s",
            prayer_result.value,
            reminder_result.value,
        )
        return prayer_result, reminder_result

    def run_prayer_refresh_job(self) -> JobResult:
        return self._guarded(PRAYER_JOB_NAME, self._refresh_prayers)

    def run_reminder_refresh_job(self) -> JobResult:
        return self._guarded(REMINDER_JOB_NAME, self._refresh_reminder)

    def _guarded(self, name: str, body: JobBody) -> JobResult:
        started = datetime.now()
        try:
            result = body()
        except Exception:
            self._logger.exception("Background job %s failed", name)
            return JobResult.FAILED
        self._logger.info(
            "Background job %s finished in %.2fs",
            name,
            (datetime.now() - started).total_seconds(),
        )
        return result

    def _refresh_prayers(self) -> JobResult:
        app_settings = self._settings.load_app_settings()
        if app_settings is None:
            self._logger.warning(
                "No app settings found, skipping prayer notification reschedule"
            )
            return JobResult.OK

        coordinates = self._settings.load_coordinates() or self._default_coordinates
        if coordinates is None:
            self._logger.warning(
                "No location available, skipping prayer notification reschedule"
            )
            return JobResult.OK

        method = app_settings.calculation_method
        madhab = app_settings.madhab
        prayer_times = self._prayer_service.today(
            coordinates, method=method, madhab=madhab
        )
        self._notifications.reschedule_daily(app_settings, prayer_times)

        self._maintain_cache(coordinates, method, madhab)
        return JobResult.OK

    def _refresh_reminder(self) -> JobResult:
        reminder = self._settings.load_reminder()
        if reminder is None:
            self._logger.warning(
                "No tasbih reminder settings found, skipping reminder reschedule"
            )
            return JobResult.OK
        self._notifications.schedule_reminder(reminder)
        return JobResult.OK

    def _maintain_cache(
        self, coordinates: Coordinates, method: Optional[str], madhab: Optional[str]
    ) -> None:
        # Housekeeping only; today's notifications are already registered.
        try:
            if self._prefetch_days > 0:
                self._prayer_service.prefetch(
                    coordinates, self._prefetch_days, method=method, madhab=madhab
                )
            self._cache.purge_stale()
        except Exception:
            self._logger.exception("Prayer-time cache maintenance failed")
