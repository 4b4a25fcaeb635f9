"""
Clock and Timezone Utilities
Conversions between UTC instants and wall-clock time in named IANA zones
"""

import re
from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from typing import Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from exceptions import InvalidTimezoneError, InvalidTimeFormatError
from models import Weekday, WEEKDAYS


UTC = timezone.utc

# One- or two-digit hour, two-digit minute
HHMM_PATTERN = re.compile(r"^([01]?[0-9]|2[0-3]):([0-5][0-9])$")


@lru_cache(maxsize=256)
def _load_zone(name: str) -> ZoneInfo:
    return ZoneInfo(name)


def get_zone(name: str) -> ZoneInfo:
    """Resolve an IANA timezone name, raising InvalidTimezoneError if unknown"""
    if not isinstance(name, str) or not name.strip():
        raise InvalidTimezoneError(name)
    try:
        return _load_zone(name.strip())
    except (ZoneInfoNotFoundError, ValueError, OSError):
        raise InvalidTimezoneError(name)


def validate_timezone(name: str) -> str:
    """Return the normalized zone name if it is valid"""
    get_zone(name)
    return name.strip()


def parse_hhmm(value: str) -> time:
    """Parse 'HH:mm' (24-hour) into a time object"""
    if not isinstance(value, str):
        raise InvalidTimeFormatError(value)
    match = HHMM_PATTERN.match(value.strip())
    if not match:
        raise InvalidTimeFormatError(value)
    return time(int(match.group(1)), int(match.group(2)))


def normalize_hhmm(value: str) -> str:
    """'8:05' -> '08:05'"""
    return parse_hhmm(value).strftime("%H:%M")


def utcnow() -> datetime:
    """Current instant as an aware UTC datetime (the default clock)"""
    return datetime.now(UTC)


def ensure_utc(dt: datetime) -> datetime:
    """Aware UTC datetime; naive values are interpreted as UTC"""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def to_naive_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Storage representation: naive datetime in UTC"""
    if dt is None:
        return None
    return ensure_utc(dt).replace(tzinfo=None)


def to_zone(instant: datetime, tz: str) -> datetime:
    """Instant expressed as aware wall-clock time in `tz`"""
    return ensure_utc(instant).astimezone(get_zone(tz))


def local_date_time(instant: datetime, tz: str) -> Tuple[date, str]:
    """Wall-clock calendar date and 'HH:mm' of an instant in a zone"""
    local = to_zone(instant, tz)
    return local.date(), local.strftime("%H:%M")


def local_date(instant: datetime, tz: str) -> date:
    return to_zone(instant, tz).date()


def _localize(naive: datetime, zone: ZoneInfo) -> datetime:
    """
    Attach a zone to a naive wall-clock value.

    Ambiguous times (fall back) take the first occurrence. Times inside a
    spring-forward gap are shifted forward by the gap length.
    """
    aware = naive.replace(tzinfo=zone, fold=0)
    roundtrip = aware.astimezone(UTC).astimezone(zone)
    if roundtrip.replace(tzinfo=None) != naive:
        # Nonexistent wall time; fold=0 already maps it past the transition
        return roundtrip
    return aware


def local_to_utc(day: date, hhmm: str, tz: str) -> datetime:
    """
    UTC instant for a calendar date + 'HH:mm' in a zone.

    The UTC offset is resolved per date, so the same 'HH:mm' maps to
    different UTC times on either side of a DST transition.
    """
    zone = get_zone(tz)
    wall = datetime.combine(day, parse_hhmm(hhmm))
    return _localize(wall, zone).astimezone(UTC)


def start_of_day_in_tz(instant: datetime, tz: str) -> datetime:
    """UTC instant of local midnight of the day containing `instant` in `tz`"""
    zone = get_zone(tz)
    day = to_zone(instant, tz).date()
    return _localize(datetime.combine(day, time.min), zone).astimezone(UTC)


def add_days_in_tz(instant: datetime, days: int, tz: str) -> datetime:
    """Add whole days keeping the local wall-clock time across DST changes"""
    zone = get_zone(tz)
    local = to_zone(instant, tz).replace(tzinfo=None)
    return _localize(local + timedelta(days=days), zone).astimezone(UTC)


def weekday_of_date(day: date) -> Weekday:
    return WEEKDAYS[day.weekday()]


def weekday_of(instant: datetime, tz: str) -> Weekday:
    """Weekday of an instant as observed in `tz`"""
    return weekday_of_date(local_date(instant, tz))


def day_range_utc(day: date, tz: str) -> Tuple[datetime, datetime]:
    """[start, end) of a local calendar day, as UTC instants"""
    zone = get_zone(tz)
    start = _localize(datetime.combine(day, time.min), zone).astimezone(UTC)
    end = _localize(datetime.combine(day + timedelta(days=1), time.min), zone).astimezone(UTC)
    return start, end


__all__ = [
    "UTC",
    "get_zone",
    "validate_timezone",
    "parse_hhmm",
    "normalize_hhmm",
    "utcnow",
    "ensure_utc",
    "to_naive_utc",
    "to_zone",
    "local_date_time",
    "local_date",
    "local_to_utc",
    "start_of_day_in_tz",
    "add_days_in_tz",
    "weekday_of_date",
    "weekday_of",
    "day_range_utc",
]
