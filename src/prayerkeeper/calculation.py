from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
import logging
from typing import Dict, Optional


DEFAULT_METHOD = "MuslimWorldLeague"

# Known method ids the calculation engine cannot honour.
UNSUPPORTED_METHODS = frozenset({"Turkey"})


class Madhab(Enum):
    SHAFI = "shafi"
    HANAFI = "hanafi"

    @property
    def shadow_length(self) -> int:
        # Asr begins when an object's shadow is this many times its length.
        return 2 if self is Madhab.HANAFI else 1


class HighLatitudeRule(Enum):
    MIDDLE_OF_THE_NIGHT = "middle_of_the_night"
    SEVENTH_OF_THE_NIGHT = "seventh_of_the_night"
    TWILIGHT_ANGLE = "twilight_angle"


@dataclass(frozen=True)
class CalculationParameters:
    method: str
    fajr_angle: float
    isha_angle: float = 0.0
    isha_interval: int = 0
    maghrib_angle: float = 0.0
    madhab: Madhab = Madhab.SHAFI
    high_latitude_rule: HighLatitudeRule = HighLatitudeRule.MIDDLE_OF_THE_NIGHT
    method_adjustments: Dict[str, int] = field(default_factory=dict)

    @property
    def shadow_length(self) -> int:
        return self.madhab.shadow_length


PRESETS: Dict[str, CalculationParameters] = {
    "MuslimWorldLeague": CalculationParameters(
        method="MuslimWorldLeague",
        fajr_angle=18.0,
        isha_angle=17.0,
        method_adjustments={"dhuhr": 1},
    ),
    "Egyptian": CalculationParameters(
        method="Egyptian",
        fajr_angle=19.5,
        isha_angle=17.5,
        method_adjustments={"dhuhr": 1},
    ),
    "Karachi": CalculationParameters(
        method="Karachi",
        fajr_angle=18.0,
        isha_angle=18.0,
        method_adjustments={"dhuhr": 1},
    ),
    "UmmAlQura": CalculationParameters(
        method="UmmAlQura",
        fajr_angle=18.5,
        isha_interval=90,
    ),
    "Dubai": CalculationParameters(
        method="Dubai",
        fajr_angle=18.2,
        isha_angle=18.2,
        method_adjustments={"sunrise": -3, "dhuhr": 3, "asr": 3, "maghrib": 3},
    ),
    "MoonsightingCommittee": CalculationParameters(
        method="MoonsightingCommittee",
        fajr_angle=18.0,
        isha_angle=18.0,
        method_adjustments={"dhuhr": 5, "maghrib": 3},
    ),
    "NorthAmerica": CalculationParameters(
        method="NorthAmerica",
        fajr_angle=15.0,
        isha_angle=15.0,
        method_adjustments={"dhuhr": 1},
    ),
    "Kuwait": CalculationParameters(
        method="Kuwait",
        fajr_angle=18.0,
        isha_angle=17.5,
    ),
    "Qatar": CalculationParameters(
        method="Qatar",
        fajr_angle=18.0,
        isha_interval=90,
    ),
    "Singapore": CalculationParameters(
        method="Singapore",
        fajr_angle=20.0,
        isha_angle=18.0,
        method_adjustments={"dhuhr": 1},
    ),
    "Tehran": CalculationParameters(
        method="Tehran",
        fajr_angle=17.7,
        isha_angle=14.0,
        maghrib_angle=4.5,
    ),
}


def madhab_from_id(school_id: Optional[str]) -> Madhab:
    if school_id and school_id.lower() == Madhab.HANAFI.value:
        return Madhab.HANAFI
    return Madhab.SHAFI


def resolve_parameters(
    method_id: Optional[str], school_id: Optional[str]
) -> CalculationParameters:
    logger = logging.getLogger("CalculationParameters")
    preset = PRESETS.get(method_id or "")
    if method_id in UNSUPPORTED_METHODS:
        logger.warning(
            "%s calculation method is not supported by the engine; using %s",
            method_id,
            DEFAULT_METHOD,
        )
        preset = None
    elif preset is None:
        logger.warning(
            "Unsupported calculation method %r; using %s", method_id, DEFAULT_METHOD
        )
    if preset is None:
        preset = PRESETS[DEFAULT_METHOD]

    # Twilight angle keeps fajr/isha usable near the poles for every method.
    return replace(
        preset,
        madhab=madhab_from_id(school_id),
        high_latitude_rule=HighLatitudeRule.TWILIGHT_ANGLE,
        method_adjustments=dict(preset.method_adjustments),
    )
