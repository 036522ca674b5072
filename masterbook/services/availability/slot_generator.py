# masterbook/services/availability/slot_generator.py
"""
Pure slot generation.

Turns absolute availability windows plus occupied intervals into the list of
start times a client may book. Nothing here touches the database, so the
same functions back the public slot query, the dashboard preview and the
booking validation path.
"""
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence

from masterbook.utils.time_windows import (
    ensure_utc,
    get_zone,
    local_date_of,
    local_datetime_to_instant,
    to_iso,
)


@dataclass(frozen=True)
class ServiceSpan:
    """Duration and buffers of what is being booked"""
    duration_minutes: int
    buffer_before_minutes: int = 0
    buffer_after_minutes: int = 0

    @property
    def total_minutes(self) -> int:
        return self.buffer_before_minutes + self.duration_minutes + self.buffer_after_minutes

    @classmethod
    def combine(cls, services: Sequence) -> "ServiceSpan":
        """
        Synthetic span for a multi-service booking: durations are summed, the
        leading buffer comes from the first service and the trailing buffer
        from the last one.
        """
        if not services:
            raise ValueError("At least one service is required")
        return cls(
            duration_minutes=sum(int(s.duration_minutes) for s in services),
            buffer_before_minutes=int(services[0].buffer_before_minutes or 0),
            buffer_after_minutes=int(services[-1].buffer_after_minutes or 0),
        )


@dataclass(frozen=True)
class TimeWindow:
    """Absolute [start, end) interval the master is open for bookings"""
    start: datetime
    end: datetime
    granularity_minutes: Optional[int] = None


@dataclass(frozen=True)
class Interval:
    """Absolute [start, end) interval that is already taken"""
    start: datetime
    end: datetime

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return self.start < end and self.end > start


@dataclass(frozen=True)
class Slot:
    date: date
    start: datetime
    end: datetime

    def to_dict(self) -> Dict[str, str]:
        return {
            "date": self.date.isoformat(),
            "start": to_iso(self.start),
            "end": to_iso(self.end),
        }


def day_of_week_sunday_first(day: date) -> int:
    """0 = Sunday ... 6 = Saturday"""
    return (day.weekday() + 1) % 7


def windows_for_date(
        day: date,
        timezone_name: str,
        rules: Iterable,
        explicit_windows: Iterable,
        excluded_dates: Iterable[date],
        window_granularity_minutes: int,
) -> List[TimeWindow]:
    """
    Open windows for one local calendar date.

    Excluded dates have none. Explicit windows for the date replace the weekly
    rules entirely; otherwise every rule matching the weekday applies.
    """
    if day in set(excluded_dates):
        return []

    dated = [w for w in explicit_windows if w.date == day]
    if dated:
        return [
            TimeWindow(
                start=local_datetime_to_instant(day, w.start_time, timezone_name),
                end=local_datetime_to_instant(day, w.end_time, timezone_name),
                granularity_minutes=window_granularity_minutes,
            )
            for w in dated
        ]

    weekday = day_of_week_sunday_first(day)
    return [
        TimeWindow(
            start=local_datetime_to_instant(day, r.start_time, timezone_name),
            end=local_datetime_to_instant(day, r.end_time, timezone_name),
            granularity_minutes=r.slot_granularity_minutes,
        )
        for r in rules
        if r.day_of_week == weekday
    ]


def align_up(instant: datetime, step_minutes: int, timezone_name: str = "UTC") -> datetime:
    """First instant at or after `instant` whose local clock sits on a step boundary, with no seconds"""
    instant = ensure_utc(instant)
    local = instant.astimezone(get_zone(timezone_name))
    past = timedelta(
        minutes=local.minute % step_minutes, seconds=local.second, microseconds=local.microsecond
    )
    if not past:
        return instant
    return instant - past + timedelta(minutes=step_minutes)


def candidate_starts(window: TimeWindow, total_minutes: int, granularity_minutes: int) -> List[datetime]:
    """Every block start from window.start to window.end - total span, inclusive"""
    if granularity_minutes <= 0:
        raise ValueError("granularity_minutes must be positive")
    start = ensure_utc(window.start)
    last = ensure_utc(window.end) - timedelta(minutes=total_minutes)
    step = timedelta(minutes=granularity_minutes)

    starts = []
    current = start
    while current <= last:
        starts.append(current)
        current += step
    return starts


def generate_slots(
        span: ServiceSpan,
        windows: Iterable[TimeWindow],
        occupied: Iterable[Interval],
        granularity_minutes: int,
        min_lead_minutes: int,
        now: datetime,
        timezone_name: str = "UTC",
        align_minutes: Optional[int] = None,
) -> List[Slot]:
    """
    Bookable slots for `span` across `windows`.

    A candidate block covers [start, start + total span); the service itself
    starts after the leading buffer. The block is dropped if the service would
    start before now + lead time, or if any occupied interval overlaps the
    block including buffers. Windows are handled independently and results are
    concatenated in window start order; a slot produced by two overlapping
    windows is emitted once.

    With `align_minutes`, each service start is pushed forward to the next
    boundary of that many minutes on the local clock, the same boundary the
    booking path requires. A block that no longer fits its window is dropped.
    """
    busy = [Interval(ensure_utc(o.start), ensure_utc(o.end)) for o in occupied]
    earliest = ensure_utc(now) + timedelta(minutes=min_lead_minutes)
    before = timedelta(minutes=span.buffer_before_minutes)
    duration = timedelta(minutes=span.duration_minutes)
    after = timedelta(minutes=span.buffer_after_minutes)

    slots = []
    seen = set()
    for window in sorted(windows, key=lambda w: (ensure_utc(w.start), ensure_utc(w.end))):
        step = window.granularity_minutes or granularity_minutes
        window_end = ensure_utc(window.end)
        for block_start in candidate_starts(window, span.total_minutes, step):
            service_start = block_start + before
            if align_minutes:
                service_start = align_up(service_start, align_minutes, timezone_name)
                block_start = service_start - before
                if service_start + duration + after > window_end:
                    continue
            service_end = service_start + duration
            block_end = service_end + after

            if service_start < earliest:
                continue
            if any(o.overlaps(block_start, block_end) for o in busy):
                continue

            key = (service_start, service_end)
            if key in seen:
                continue
            seen.add(key)
            slots.append(Slot(
                date=local_date_of(service_start, timezone_name),
                start=service_start,
                end=service_end,
            ))

    return slots


def fits_any_window(start: datetime, end: datetime, windows: Iterable[TimeWindow]) -> bool:
    """True if [start, end) lies entirely inside one window"""
    start = ensure_utc(start)
    end = ensure_utc(end)
    return any(ensure_utc(w.start) <= start and end <= ensure_utc(w.end) for w in windows)
