"""TTL-bounded cache of computed prayer times on top of the key-value store.

Each entry is stored as two records: the JSON payload under the cache key
and an epoch-millisecond expiration stamp under ``<key>_expiration``. The
cache is only a shortcut around the calculation engine, so every storage
failure degrades to a miss or a logged no-op instead of propagating.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
import json
import logging
from typing import Callable, Optional

from prayerkeeper.kv_store import KeyValueStore, StoreError
from prayerkeeper.prayer_times import (
    CacheDecodeError,
    Clock,
    Coordinates,
    PrayerTimes,
    SystemClock,
    days_from,
    prayer_times_from_dict,
)


CACHE_KEY_PREFIX = "prayer_times_"
EXPIRATION_SUFFIX = "_expiration"
RETENTION = timedelta(days=30)
DEFAULT_TOKEN = "default"


@dataclass(frozen=True)
class CachedPrayerEntry:
    times: PrayerTimes
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return _to_millis(self.expires_at) < _to_millis(now)


def cache_key(
    day: date,
    coordinates: Coordinates,
    method: Optional[str] = None,
    madhab: Optional[str] = None,
) -> str:
    location = (
        f"{_coordinate_token(coordinates.latitude)}"
        f"_{_coordinate_token(coordinates.longitude)}"
    )
    return (
        f"{CACHE_KEY_PREFIX}{day.isoformat()}_{location}"
        f"_{method or DEFAULT_TOKEN}_{madhab or DEFAULT_TOKEN}"
    )


class PrayerTimesCache:
    def __init__(
        self,
        store: KeyValueStore,
        *,
        clock: Optional[Clock] = None,
        retention: timedelta = RETENTION,
    ) -> None:
        self._store = store
        self._clock = clock or SystemClock()
        self._retention = retention
        self._logger = logging.getLogger(self.__class__.__name__)

    def get(
        self,
        day: date,
        coordinates: Coordinates,
        method: Optional[str] = None,
        madhab: Optional[str] = None,
    ) -> Optional[CachedPrayerEntry]:
        key = cache_key(day, coordinates, method, madhab)
        try:
            expiration = self._store.get_int(key + EXPIRATION_SUFFIX)
            if expiration is None or expiration < _to_millis(self._clock.now()):
                self._remove_entry(key)
                return None
            raw = self._store.get_str(key)
        except StoreError as exc:
            self._logger.warning("Cache read failed for %s: %s", key, exc)
            return None

        if raw is None:
            return None
        try:
            entry = _decode_entry(raw)
        except CacheDecodeError as exc:
            self._logger.warning("Dropping unreadable cache entry %s: %s", key, exc)
            self._remove_entry(key)
            return None
        self._logger.debug("Cache hit for %s", key)
        return entry

    def put(
        self,
        day: date,
        coordinates: Coordinates,
        method: Optional[str],
        madhab: Optional[str],
        times: PrayerTimes,
    ) -> Optional[CachedPrayerEntry]:
        key = cache_key(day, coordinates, method, madhab)
        created_at = self._clock.now()
        entry = CachedPrayerEntry(
            times=times,
            created_at=created_at,
            expires_at=created_at + self._retention,
        )
        try:
            self._store.save(key, _encode_entry(entry))
            self._store.save(key + EXPIRATION_SUFFIX, _to_millis(entry.expires_at))
        except StoreError as exc:
            self._logger.error("Cache write failed for %s: %s", key, exc)
            return None
        self._logger.debug("Cached prayer times for %s", key)
        return entry

    def prefetch(
        self,
        supplier: Callable[[date], PrayerTimes],
        days: int,
        *,
        coordinates: Coordinates,
        method: Optional[str] = None,
        madhab: Optional[str] = None,
    ) -> int:
        """Fill the cache for ``days`` days starting today; returns days written."""
        written = 0
        for day in days_from(self._clock.now().date(), days):
            if self.get(day, coordinates, method, madhab) is not None:
                continue
            try:
                times = supplier(day)
            except Exception:
                # One bad day must not stop the rest of the window.
                self._logger.exception("Prefetch failed for %s", day.isoformat())
                continue
            if self.put(day, coordinates, method, madhab, times) is not None:
                written += 1
        self._logger.info("Prefetched %s of %s days", written, days)
        return written

    def purge_stale(self) -> int:
        cutoff = self._clock.now().date() - self._retention
        removed = 0
        try:
            keys = self._store.list_keys(CACHE_KEY_PREFIX)
        except StoreError as exc:
            self._logger.warning("Cache sweep skipped: %s", exc)
            return 0
        for key in keys:
            if key.endswith(EXPIRATION_SUFFIX):
                continue
            day = _embedded_date(key)
            if day is None or day >= cutoff:
                continue
            if self._remove_entry(key):
                removed += 1
        if removed:
            self._logger.info("Purged %s stale prayer-time entries", removed)
        return removed

    def clear(self) -> None:
        try:
            for key in self._store.list_keys(CACHE_KEY_PREFIX):
                self._store.remove(key)
        except StoreError as exc:
            self._logger.error("Cache clear failed: %s", exc)
            return
        self._logger.info("Prayer-time cache cleared")

    def _remove_entry(self, key: str) -> bool:
        try:
            self._store.remove(key)
            self._store.remove(key + EXPIRATION_SUFFIX)
        except StoreError as exc:
            self._logger.warning("Cache eviction failed for %s: %s", key, exc)
            return False
        return True


def _encode_entry(entry: CachedPrayerEntry) -> str:
    payload = entry.times.to_dict()
    payload["createdAt"] = _to_millis(entry.created_at)
    payload["expiresAt"] = _to_millis(entry.expires_at)
    return json.dumps(payload, sort_keys=True)


def _decode_entry(raw: str) -> CachedPrayerEntry:
    try:
        payload = json.loads(raw)
    except ValueError as exc:
        raise CacheDecodeError(f"Cached entry is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise CacheDecodeError("Cached entry is not a JSON object")
    times = prayer_times_from_dict(payload)
    try:
        created_at = datetime.fromtimestamp(int(payload["createdAt"]) / 1000)
        expires_at = datetime.fromtimestamp(int(payload["expiresAt"]) / 1000)
    except KeyError as exc:
        raise CacheDecodeError(f"Missing field in cached entry: {exc.args[0]}") from exc
    except (TypeError, ValueError, OverflowError, OSError) as exc:
        raise CacheDecodeError(f"Invalid timestamp in cached entry: {exc}") from exc
    return CachedPrayerEntry(times=times, created_at=created_at, expires_at=expires_at)


def _embedded_date(key: str) -> Optional[date]:
    raw = key[len(CACHE_KEY_PREFIX):len(CACHE_KEY_PREFIX) + 10]
    try:
        return date.fromisoformat(raw)
    except ValueError:
        return None


def _coordinate_token(value: float) -> str:
    # Adding 0.0 folds -0.0 into 0.0 so both signs of zero share a key.
    return f"{round(value, 4) + 0.0:.4f}"


def _to_millis(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)
