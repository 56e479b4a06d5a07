from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import List

from prayerkeeper.job_runner import JobResult
from prayerkeeper.kv_store import JsonFileStore
from prayerkeeper.notifications import NotificationRegistration, REMINDER_ID
from prayerkeeper.prayer_cache import CACHE_KEY_PREFIX
from prayerkeeper.prayer_times import Coordinates
from prayerkeeper.rescheduler import PRAYER_JOB_NAME, REMINDER_JOB_NAME
from prayerkeeper.settings import AppSettings, ReminderSettings
from prayerkeeper.startup import BackgroundServices, build_background_services


NOW = datetime(2024, 3, 10, 4, 0)
MAKKAH = Coordinates(latitude=21.4225, longitude=39.8262)


class FixedClock:
    def __init__(self, now: datetime) -> None:
        self._now = now

    def now(self) -> datetime:
        return self._now


class FakeEngine:
    def __init__(self, fail: bool = False) -> None:
        self.days: List[date] = []
        self._fail = fail

    def __call__(self, day, coordinates, params):
        if self._fail:
            raise RuntimeError("engine crashed")
        self.days.append(day)
        base = datetime(day.year, day.month, day.day)
        return {
            "fajr": base + timedelta(hours=5, minutes=21),
            "sunrise": base + timedelta(hours=6, minutes=38),
            "dhuhr": base + timedelta(hours=12, minutes=29),
            "asr": base + timedelta(hours=15, minutes=52),
            "maghrib": base + timedelta(hours=18, minutes=21),
            "isha": base + timedelta(hours=19, minutes=51),
        }


def _services(
    tmp_path: Path, scheduler, engine: FakeEngine, prefetch_days: int = 0
) -> BackgroundServices:
    delivered: List[NotificationRegistration] = []
    return build_background_services(
        store=JsonFileStore(tmp_path / "store.json"),
        scheduler=scheduler,
        engine=engine,
        deliver=delivered.append,
        clock=FixedClock(NOW),
        prefetch_days=prefetch_days,
    )


def _alert_ids(services: BackgroundServices) -> List[int]:
    return [item.id for item in services.alerts.active_registrations()]


def test_initialize_registers_each_job_once(tmp_path: Path, scheduler) -> None:
    services = _services(tmp_path, scheduler, FakeEngine())

    services.rescheduler.initialize()
    services.rescheduler.initialize()

    job_ids = sorted(job.id for job in services.job_runner.scheduler.get_jobs())
    assert job_ids == sorted([PRAYER_JOB_NAME, REMINDER_JOB_NAME])


def test_missing_configuration_is_a_successful_noop(tmp_path: Path, scheduler) -> None:
    engine = FakeEngine()
    services = _services(tmp_path, scheduler, engine)

    assert services.rescheduler.force_reschedule_now() == (JobResult.OK, JobResult.OK)
    assert engine.days == []
    assert _alert_ids(services) == []


def test_missing_location_skips_prayer_refresh(tmp_path: Path, scheduler) -> None:
    engine = FakeEngine()
    services = _services(tmp_path, scheduler, engine)
    services.settings.save_app_settings(AppSettings())

    assert services.rescheduler.run_prayer_refresh_job() is JobResult.OK
    assert engine.days == []


def test_prayer_refresh_registers_enabled_slots(tmp_path: Path, scheduler) -> None:
    services = _services(tmp_path, scheduler, FakeEngine())
    services.settings.save_app_settings(
        AppSettings(
            calculation_method="MuslimWorldLeague",
            madhab="shafi",
            notifications={"fajr": True, "dhuhr": True, "asr": False, "maghrib": True, "isha": True},
        )
    )
    services.settings.save_coordinates(MAKKAH)

    assert services.rescheduler.run_prayer_refresh_job() is JobResult.OK
    assert _alert_ids(services) == [0, 1, 3, 4]


def test_repeated_refreshes_converge_on_same_alerts(tmp_path: Path, scheduler) -> None:
    engine = FakeEngine()
    services = _services(tmp_path, scheduler, engine)
    services.settings.save_app_settings(AppSettings())
    services.settings.save_coordinates(MAKKAH)

    services.rescheduler.run_prayer_refresh_job()
    first = services.alerts.active_registrations()
    services.rescheduler.run_prayer_refresh_job()

    assert services.alerts.active_registrations() == first
    # Second run reads today's times from the cache.
    assert engine.days == [date(2024, 3, 10)]


def test_prayer_refresh_prefetches_upcoming_days(tmp_path: Path, scheduler) -> None:
    engine = FakeEngine()
    services = _services(tmp_path, scheduler, engine, prefetch_days=3)
    services.settings.save_app_settings(AppSettings())
    services.settings.save_coordinates(MAKKAH)

    services.rescheduler.run_prayer_refresh_job()

    assert engine.days == [date(2024, 3, 10), date(2024, 3, 11), date(2024, 3, 12)]
    assert len(services.store.list_keys(CACHE_KEY_PREFIX)) == 6


def test_timezone_aware_engine_times_are_scheduled(tmp_path: Path, scheduler) -> None:
    local_engine = FakeEngine()

    def utc_engine(day, coordinates, params):
        local = local_engine(day, coordinates, params)
        return {name: value.astimezone(timezone.utc) for name, value in local.items()}

    services = _services(tmp_path, scheduler, utc_engine)
    services.settings.save_app_settings(AppSettings())
    services.settings.save_coordinates(MAKKAH)

    assert services.rescheduler.run_prayer_refresh_job() is JobResult.OK
    registrations = services.alerts.active_registrations()
    assert [item.id for item in registrations] == [0, 1, 2, 3, 4]
    assert registrations[0].fire_at == datetime(2024, 3, 10, 5, 21)


def test_engine_failure_reports_failed(tmp_path: Path, scheduler) -> None:
    services = _services(tmp_path, scheduler, FakeEngine(fail=True))
    services.settings.save_app_settings(AppSettings())
    services.settings.save_coordinates(MAKKAH)

    assert services.rescheduler.run_prayer_refresh_job() is JobResult.FAILED


def test_corrupt_settings_fail_only_their_own_job(tmp_path: Path, scheduler) -> None:
    services = _services(tmp_path, scheduler, FakeEngine())
    services.store.save("app_settings", "{not-json")
    services.settings.save_reminder(ReminderSettings(hour=21, minute=0, enabled=True))

    prayer, reminder = services.rescheduler.force_reschedule_now()

    assert prayer is JobResult.FAILED
    assert reminder is JobResult.OK
    assert _alert_ids(services) == [REMINDER_ID]


def test_reminder_refresh_registers_and_disables(tmp_path: Path, scheduler) -> None:
    services = _services(tmp_path, scheduler, FakeEngine())
    services.settings.save_reminder(ReminderSettings(hour=21, minute=0, enabled=True))

    services.rescheduler.run_reminder_refresh_job()
    [registration] = services.alerts.active_registrations()
    assert registration.fire_at == datetime(2024, 3, 10, 21, 0)

    services.settings.save_reminder(ReminderSettings(hour=21, minute=0, enabled=False))
    services.rescheduler.run_reminder_refresh_job()
    assert _alert_ids(services) == []


def test_cancel_all_removes_periodic_jobs(tmp_path: Path, scheduler) -> None:
    services = _services(tmp_path, scheduler, FakeEngine())
    services.rescheduler.initialize()

    services.rescheduler.cancel_all()

    assert services.job_runner.scheduler.get_jobs() == []
