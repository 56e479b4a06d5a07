from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
import logging
from typing import TYPE_CHECKING, Any, Callable, Dict, Mapping, Optional

from prayerkeeper.calculation import CalculationParameters, resolve_parameters

if TYPE_CHECKING:
    from prayerkeeper.prayer_cache import PrayerTimesCache


PRAYER_NAMES = ("fajr", "sunrise", "dhuhr", "asr", "maghrib", "isha")


class EngineError(RuntimeError):
    """Raised when the calculation engine returns unusable data."""


class CacheDecodeError(ValueError):
    """Raised when a stored prayer-times payload cannot be parsed."""


@dataclass(frozen=True)
class Coordinates:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class PrayerTimes:
    date: date
    fajr: Optional[datetime] = None
    sunrise: Optional[datetime] = None
    dhuhr: Optional[datetime] = None
    asr: Optional[datetime] = None
    maghrib: Optional[datetime] = None
    isha: Optional[datetime] = None

    def get(self, name: str) -> Optional[datetime]:
        if name not in PRAYER_NAMES:
            raise KeyError(name)
        return getattr(self, name)

    def to_dict(self) -> Dict[str, Any]:
        times = {}
        for name in PRAYER_NAMES:
            value = self.get(name)
            times[name] = value.isoformat() if value is not None else None
        return {"date": self.date.isoformat(), "times": times}

    @classmethod
    def from_mapping(
        cls, day: date, times: Mapping[str, Optional[datetime]]
    ) -> "PrayerTimes":
        values = {}
        for name in PRAYER_NAMES:
            value = times.get(name)
            if value is not None and not isinstance(value, datetime):
                raise EngineError(f"Engine returned non-datetime for {name}: {value!r}")
            values[name] = _as_local_naive(value)
        return cls(date=day, **values)


def prayer_times_from_dict(payload: Dict[str, Any]) -> PrayerTimes:
    # Strict parsing: a malformed cache record is dropped, not half-used.
    try:
        raw_date = payload["date"]
        times = payload["times"]
    except KeyError as exc:
        raise CacheDecodeError(f"Missing field in cached payload: {exc.args[0]}") from exc
    if not isinstance(times, dict):
        raise CacheDecodeError("Cached payload 'times' must be a mapping")
    try:
        values = {
            name: _as_local_naive(datetime.fromisoformat(times[name]))
            if times.get(name)
            else None
            for name in PRAYER_NAMES
        }
        return PrayerTimes(date=date.fromisoformat(raw_date), **values)
    except (TypeError, ValueError, OverflowError, OSError) as exc:
        raise CacheDecodeError(f"Invalid timestamp in cached payload: {exc}") from exc


def _as_local_naive(value: Optional[datetime]) -> Optional[datetime]:
    # Scheduling compares against naive local now; aware instants are converted.
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


CalculationEngine = Callable[
    [date, Coordinates, CalculationParameters], Mapping[str, Optional[datetime]]
]


class Clock:
    def now(self) -> datetime:  # pragma: no cover - interface only
        raise NotImplementedError


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now()


class PrayerTimeService:
    """Cached-or-computed prayer times for one location and settings pair."""

    def __init__(
        self,
        *,
        engine: CalculationEngine,
        cache: "PrayerTimesCache",
        clock: Optional[Clock] = None,
    ) -> None:
        self._engine = engine
        self._cache = cache
        self._clock = clock or SystemClock()
        self._logger = logging.getLogger(self.__class__.__name__)

    def times_for(
        self,
        day: date,
        coordinates: Coordinates,
        *,
        method: Optional[str],
        madhab: Optional[str],
    ) -> PrayerTimes:
        cached = self._cache.get(day, coordinates, method, madhab)
        if cached is not None:
            return cached.times

        times = self._compute(day, coordinates, method=method, madhab=madhab)
        self._cache.put(day, coordinates, method, madhab, times)
        return times

    def today(
        self, coordinates: Coordinates, *, method: Optional[str], madhab: Optional[str]
    ) -> PrayerTimes:
        return self.times_for(
            self._clock.now().date(), coordinates, method=method, madhab=madhab
        )

    def prefetch(
        self,
        coordinates: Coordinates,
        days: int,
        *,
        method: Optional[str],
        madhab: Optional[str],
    ) -> int:
        def supplier(day: date) -> PrayerTimes:
            return self._compute(day, coordinates, method=method, madhab=madhab)

        return self._cache.prefetch(
            supplier, days, coordinates=coordinates, method=method, madhab=madhab
        )

    def _compute(
        self,
        day: date,
        coordinates: Coordinates,
        *,
        method: Optional[str],
        madhab: Optional[str],
    ) -> PrayerTimes:
        params = resolve_parameters(method, madhab)
        raw = self._engine(day, coordinates, params)
        if raw is None:
            raise EngineError(f"Engine returned nothing for {day.isoformat()}")
        times = PrayerTimes.from_mapping(day, raw)
        missing = [name for name in PRAYER_NAMES if times.get(name) is None]
        if missing:
            # Expected at extreme latitudes; the scheduler skips these slots.
            self._logger.info(
                "Engine could not compute %s for %s at %s",
                ", ".join(missing),
                day.isoformat(),
                coordinates,
            )
        return times


def combine(day: date, hour: int, minute: int) -> datetime:
    return datetime(day.year, day.month, day.day, hour, minute)


def days_from(start: date, count: int):
    for offset in range(count):
        yield start + timedelta(days=offset)
