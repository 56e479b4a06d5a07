from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
from typing import Any, Dict, Mapping, Optional

from prayerkeeper.kv_store import KeyValueStore
from prayerkeeper.prayer_times import PRAYER_NAMES, Coordinates


APP_SETTINGS_KEY = "app_settings"
REMINDER_HOUR_KEY = "tesbih_reminder_hour"
REMINDER_MINUTE_KEY = "tesbih_reminder_minute"
REMINDER_ENABLED_KEY = "tesbih_reminder_enabled"
LATITUDE_KEY = "user_latitude"
LONGITUDE_KEY = "user_longitude"


class SettingsError(ValueError):
    """Raised when persisted settings exist but cannot be parsed."""


def _all_enabled() -> Dict[str, bool]:
    return {name: True for name in PRAYER_NAMES}


@dataclass(frozen=True)
class AppSettings:
    calculation_method: str = "Auto"
    madhab: str = "hanafi"
    notifications: Mapping[str, bool] = field(default_factory=_all_enabled)
    offsets: Mapping[str, int] = field(default_factory=dict)

    def is_enabled(self, prayer: str) -> bool:
        return bool(self.notifications.get(prayer, False))

    def offset_minutes(self, prayer: str) -> int:
        return int(self.offsets.get(prayer, 0))

    def to_json(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "calculationMethod": self.calculation_method,
            "madhab": self.madhab,
            "notifications": {
                name: bool(value)
                for name, value in self.notifications.items()
                if name in PRAYER_NAMES
            },
        }
        for name in PRAYER_NAMES:
            payload[f"{name}Offset"] = self.offset_minutes(name)
        return payload

    @classmethod
    def from_json(cls, payload: Mapping[str, Any]) -> "AppSettings":
        notifications_raw = payload.get("notifications") or {}
        if not isinstance(notifications_raw, dict):
            raise SettingsError("'notifications' must be a mapping")
        # Unknown prayer names are ignored; missing ones stay disabled.
        notifications = {
            name: value if isinstance(value, bool) else True
            for name, value in notifications_raw.items()
            if name in PRAYER_NAMES
        }
        offsets = {}
        for name in PRAYER_NAMES:
            raw = payload.get(f"{name}Offset", 0)
            if isinstance(raw, bool) or not isinstance(raw, int):
                raise SettingsError(f"{name}Offset must be an integer, got {raw!r}")
            offsets[name] = raw
        return cls(
            calculation_method=str(payload.get("calculationMethod") or "Auto"),
            madhab=str(payload.get("madhab") or "hanafi"),
            notifications=notifications,
            offsets=offsets,
        )


@dataclass(frozen=True)
class ReminderSettings:
    hour: int
    minute: int
    enabled: bool = False


class SettingsRepository:
    """Reads and writes the settings the foreground app persists."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store
        self._logger = logging.getLogger(self.__class__.__name__)

    def load_app_settings(self) -> Optional[AppSettings]:
        raw = self._store.get_str(APP_SETTINGS_KEY)
        if raw is None:
            self._logger.debug("No %s in store", APP_SETTINGS_KEY)
            return None
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise SettingsError(f"Stored {APP_SETTINGS_KEY} is not valid JSON") from exc
        if not isinstance(payload, dict):
            raise SettingsError(f"Stored {APP_SETTINGS_KEY} must be a JSON object")
        return AppSettings.from_json(payload)

    def load_reminder(self) -> Optional[ReminderSettings]:
        hour = self._store.get_int(REMINDER_HOUR_KEY)
        minute = self._store.get_int(REMINDER_MINUTE_KEY)
        if hour is None or minute is None:
            return None
        if not (0 <= hour <= 23 and 0 <= minute <= 59):
            raise SettingsError(f"Reminder time out of range: {hour}:{minute}")
        enabled = self._store.get_bool(REMINDER_ENABLED_KEY)
        return ReminderSettings(hour=hour, minute=minute, enabled=bool(enabled))

    def load_coordinates(self) -> Optional[Coordinates]:
        latitude = self._store.get_float(LATITUDE_KEY)
        longitude = self._store.get_float(LONGITUDE_KEY)
        if latitude is None or longitude is None:
            return None
        return Coordinates(latitude=latitude, longitude=longitude)

    def save_app_settings(self, settings: AppSettings) -> None:
        self._store.save(APP_SETTINGS_KEY, json.dumps(settings.to_json(), sort_keys=True))

    def save_reminder(self, reminder: ReminderSettings) -> None:
        self._store.save(REMINDER_HOUR_KEY, reminder.hour)
        self._store.save(REMINDER_MINUTE_KEY, reminder.minute)
        self._store.save(REMINDER_ENABLED_KEY, reminder.enabled)

    def save_coordinates(self, coordinates: Coordinates) -> None:
        self._store.save(LATITUDE_KEY, float(coordinates.latitude))
        self._store.save(LONGITUDE_KEY, float(coordinates.longitude))
