from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
from typing import Callable, List, Protocol

from prayerkeeper.prayer_times import PrayerTimes, combine
from prayerkeeper.settings import AppSettings, ReminderSettings


REMINDER_ID = 9876
REMINDER_TITLE = "Tasbih Reminder"
REMINDER_BODY = "Time for your dhikr. Remember Allah with a peaceful heart."


@dataclass(frozen=True)
class PrayerSlot:
    prayer: str
    notification_id: int
    label: str


# Sunrise is cached but never notified.
PRAYER_SLOTS = (
    PrayerSlot("fajr", 0, "Fajr"),
    PrayerSlot("dhuhr", 1, "Dhuhr"),
    PrayerSlot("asr", 2, "Asr"),
    PrayerSlot("maghrib", 3, "Maghrib"),
    PrayerSlot("isha", 4, "Isha"),
)


@dataclass(frozen=True)
class NotificationRegistration:
    id: int
    title: str
    body: str
    fire_at: datetime
    enabled: bool = True


class AlertMechanism(Protocol):
    def schedule_one_shot(
        self, notification_id: int, title: str, body: str, fire_at: datetime
    ) -> None:
        ...

    def cancel(self, notification_id: int) -> None:
        ...


@dataclass
class NotificationScheduler:
    alerts: AlertMechanism
    now_provider: Callable[[], datetime] = datetime.now

    def __post_init__(self) -> None:
        self._logger = logging.getLogger(self.__class__.__name__)

    def reschedule_daily(
        self, settings: AppSettings, prayer_times: PrayerTimes
    ) -> List[NotificationRegistration]:
        # Cancel every slot first so a slot disabled since the last run is gone.
        self.cancel_prayer_notifications()
        return self.schedule_daily(settings, prayer_times)

    def schedule_daily(
        self, settings: AppSettings, prayer_times: PrayerTimes
    ) -> List[NotificationRegistration]:
        now = self.now_provider()
        registered: List[NotificationRegistration] = []
        for slot in PRAYER_SLOTS:
            if not settings.is_enabled(slot.prayer):
                continue
            raw_time = prayer_times.get(slot.prayer)
            if raw_time is None:
                self._logger.info(
                    "No %s time for %s; skipping", slot.prayer, prayer_times.date
                )
                continue
            fire_at = raw_time + timedelta(minutes=settings.offset_minutes(slot.prayer))
            if fire_at <= now:
                # Never register an alert that is already in the past.
                continue
            registration = NotificationRegistration(
                id=slot.notification_id,
                title=f"{slot.label} Prayer",
                body=f"Time for {slot.label} prayer",
                fire_at=fire_at,
            )
            if self._register(registration):
                registered.append(registration)
        self._logger.info(
            "Scheduled %s prayer notifications for %s",
            len(registered),
            prayer_times.date.isoformat(),
        )
        return registered

    def schedule_reminder(self, reminder: ReminderSettings) -> NotificationRegistration | None:
        if not reminder.enabled:
            self._cancel(REMINDER_ID)
            self._logger.info("Tasbih reminder disabled")
            return None
        now = self.now_provider()
        fire_at = combine(now.date(), reminder.hour, reminder.minute)
        if fire_at <= now:
            fire_at = fire_at + timedelta(days=1)
        registration = NotificationRegistration(
            id=REMINDER_ID,
            title=REMINDER_TITLE,
            body=REMINDER_BODY,
            fire_at=fire_at,
        )
        if not self._register(registration):
            return None
        return registration

    def cancel_prayer_notifications(self) -> None:
        for slot in PRAYER_SLOTS:
            self._cancel(slot.notification_id)

    def _register(self, registration: NotificationRegistration) -> bool:
        try:
            self.alerts.schedule_one_shot(
                registration.id,
                registration.title,
                registration.body,
                registration.fire_at,
            )
        except Exception:
            # One rejected alert must not block its siblings.
            self._logger.exception(
                "Failed to register notification %s at %s",
                registration.id,
                registration.fire_at,
            )
            return False
        self._logger.info(
            "Registered notification %s at %s", registration.id, registration.fire_at
        )
        return True

    def _cancel(self, notification_id: int) -> None:
        try:
            self.alerts.cancel(notification_id)
        except Exception:
            self._logger.exception("Failed to cancel notification %s", notification_id)
