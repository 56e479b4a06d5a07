from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Optional

from apscheduler.schedulers.base import BaseScheduler

from prayerkeeper.alerts import ApschedulerAlertMechanism, Deliver
from prayerkeeper.config import DeliveryConfig, ServiceConfig, load_engine
from prayerkeeper.delivery import CommandNotifier, LogNotifier, SubprocessCommandRunner
from prayerkeeper.job_runner import ApschedulerJobRunner
from prayerkeeper.kv_store import KeyValueStore
from prayerkeeper.notifications import NotificationScheduler
from prayerkeeper.prayer_cache import PrayerTimesCache
from prayerkeeper.prayer_times import (
    CalculationEngine,
    Clock,
    Coordinates,
    PrayerTimeService,
    SystemClock,
)
from prayerkeeper.rescheduler import PeriodicRescheduler
from prayerkeeper.settings import SettingsRepository


@dataclass
class BackgroundServices:
    store: KeyValueStore
    settings: SettingsRepository
    cache: PrayerTimesCache
    prayer_service: PrayerTimeService
    alerts: ApschedulerAlertMechanism
    notifications: NotificationScheduler
    job_runner: ApschedulerJobRunner
    rescheduler: PeriodicRescheduler


def build_background_services(
    *,
    store: KeyValueStore,
    scheduler: BaseScheduler,
    engine: CalculationEngine,
    deliver: Deliver,
    clock: Optional[Clock] = None,
    default_coordinates: Optional[Coordinates] = None,
    prefetch_days: int = 0,
) -> BackgroundServices:
    """Wire only what a background job needs; nothing here touches a UI.

    The scheduler must already be started (paused is fine). APScheduler keeps
    jobs added before start in a pending list where ``replace_existing`` does
    not replace, so replace-by-id only holds on a running scheduler.
    """
    if not scheduler.running:
        raise ValueError("Scheduler must be started before wiring background services")
    clock = clock or SystemClock()
    settings = SettingsRepository(store)
    cache = PrayerTimesCache(store, clock=clock)
    prayer_service = PrayerTimeService(engine=engine, cache=cache, clock=clock)
    alerts = ApschedulerAlertMechanism(scheduler=scheduler, deliver=deliver)
    notifications = NotificationScheduler(alerts=alerts, now_provider=clock.now)
    job_runner = ApschedulerJobRunner(scheduler=scheduler, now_provider=clock.now)
    rescheduler = PeriodicRescheduler(
        job_runner=job_runner,
        settings=settings,
        prayer_service=prayer_service,
        cache=cache,
        notifications=notifications,
        default_coordinates=default_coordinates,
        prefetch_days=prefetch_days,
    )
    logging.getLogger("Startup").info("Background services wired")
    return BackgroundServices(
        store=store,
        settings=settings,
        cache=cache,
        prayer_service=prayer_service,
        alerts=alerts,
        notifications=notifications,
        job_runner=job_runner,
        rescheduler=rescheduler,
    )


def services_from_config(
    config: ServiceConfig,
    *,
    store: KeyValueStore,
    scheduler: BaseScheduler,
    engine: Optional[CalculationEngine] = None,
) -> BackgroundServices:
    default_coordinates = None
    if config.location is not None:
        default_coordinates = Coordinates(
            latitude=config.location.latitude,
            longitude=config.location.longitude,
        )
    return build_background_services(
        store=store,
        scheduler=scheduler,
        engine=engine or load_engine(config.engine.target),
        deliver=build_deliver(config.delivery),
        default_coordinates=default_coordinates,
        prefetch_days=config.jobs.prefetch_days,
    )


def build_deliver(delivery: DeliveryConfig) -> Deliver:
    if not delivery.command:
        return LogNotifier()
    return CommandNotifier(
        runner=SubprocessCommandRunner(),
        command=list(delivery.command),
        timeout_seconds=delivery.timeout_seconds,
    )
