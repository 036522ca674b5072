# masterbook/utils/time_windows.py
"""
Conversions between a master's local wall-clock time and absolute instants.

Everything stored and compared inside the booking engine is an aware UTC
datetime. Local dates and clock times only exist at the edges: availability
rules/windows are written in the master's zone, and slots are labelled with
the local date they start on.
"""
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterator, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from masterbook.services.booking.errors import InvalidTimeFormat

DateLike = Union[date, str]
ClockLike = Union[time, str]


def get_zone(name: str) -> ZoneInfo:
    """Resolve an IANA zone name, rejecting unknown ones"""
    if not name or not isinstance(name, str):
        raise InvalidTimeFormat(f"Invalid timezone: {name!r}")
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise InvalidTimeFormat(f"Unknown timezone: {name}") from exc


def parse_date(value: DateLike) -> date:
    """Accept a date or a YYYY-MM-DD string"""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError as exc:
        raise InvalidTimeFormat(f"Invalid date: {value!r}") from exc


def parse_clock(value: ClockLike) -> time:
    """Accept a time or an HH:MM / HH:MM:SS string"""
    if isinstance(value, time):
        return value
    text = str(value)
    parts = text.split(":")
    if len(parts) not in (2, 3) or not all(p.isdigit() for p in parts):
        raise InvalidTimeFormat(f"Invalid time: {value!r}")
    try:
        return time(*(int(p) for p in parts))
    except ValueError as exc:
        raise InvalidTimeFormat(f"Invalid time: {value!r}") from exc


def local_datetime_to_instant(day: DateLike, clock: ClockLike, timezone_name: str) -> datetime:
    """
    Convert a local calendar date + wall-clock time in `timezone_name` to a UTC instant.

    Wall-clock times that fall into a DST gap resolve with the pre-transition
    offset; ambiguous times (DST fall-back) resolve to the first occurrence.
    """
    zone = get_zone(timezone_name)
    local = datetime.combine(parse_date(day), parse_clock(clock), tzinfo=zone)
    return local.astimezone(timezone.utc)


def local_date_of(instant: datetime, timezone_name: str) -> date:
    """Calendar date of an instant as seen in `timezone_name`"""
    return ensure_utc(instant).astimezone(get_zone(timezone_name)).date()


def local_clock_of(instant: datetime, timezone_name: str) -> time:
    return ensure_utc(instant).astimezone(get_zone(timezone_name)).time()


def ensure_utc(value: datetime) -> datetime:
    """Naive datetimes are treated as UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def iter_dates(date_from: DateLike, date_to: DateLike) -> Iterator[date]:
    """Inclusive range of calendar dates"""
    current = parse_date(date_from)
    end = parse_date(date_to)
    while current <= end:
        yield current
        current += timedelta(days=1)


def to_iso(instant: datetime) -> str:
    """ISO-8601 UTC with millisecond precision and a Z suffix"""
    return ensure_utc(instant).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
