from datetime import date, datetime, time, timedelta, timezone
from types import SimpleNamespace

from masterbook.services.availability.slot_generator import (
    Interval,
    ServiceSpan,
    TimeWindow,
    align_up,
    candidate_starts,
    day_of_week_sunday_first,
    fits_any_window,
    generate_slots,
    windows_for_date,
)
from masterbook.services.booking.booking_service import is_aligned

UTC = timezone.utc
MONDAY = date(2030, 1, 7)
NOW = datetime(2030, 1, 1, tzinfo=UTC)


def at(hour, minute=0, day=MONDAY):
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=UTC)


def window(start_hour, end_hour, step=10):
    return TimeWindow(start=at(start_hour), end=at(end_hour), granularity_minutes=step)


def rule(day_of_week, start, end, step=30):
    return SimpleNamespace(day_of_week=day_of_week, start_time=start, end_time=end,
                           slot_granularity_minutes=step)


# ============================================================================
# Windows
# ============================================================================

def test_days_are_numbered_from_sunday():
    assert day_of_week_sunday_first(date(2030, 1, 6)) == 0
    assert day_of_week_sunday_first(MONDAY) == 1
    assert day_of_week_sunday_first(date(2030, 1, 12)) == 6


def test_rules_apply_to_matching_weekday_only():
    rules = [rule(1, time(9), time(12)), rule(2, time(13), time(18))]
    windows = windows_for_date(MONDAY, "UTC", rules, [], [], 10)
    assert windows == [TimeWindow(at(9), at(12), 30)]


def test_explicit_windows_replace_rules_for_their_date():
    rules = [rule(1, time(9), time(12))]
    explicit = [SimpleNamespace(date=MONDAY, start_time=time(14), end_time=time(16))]
    windows = windows_for_date(MONDAY, "UTC", rules, explicit, [], 10)
    assert windows == [TimeWindow(at(14), at(16), 10)]


def test_excluded_date_has_no_windows():
    rules = [rule(1, time(9), time(12))]
    explicit = [SimpleNamespace(date=MONDAY, start_time=time(14), end_time=time(16))]
    assert windows_for_date(MONDAY, "UTC", rules, explicit, [MONDAY], 10) == []


def test_windows_are_converted_from_master_timezone():
    windows = windows_for_date(MONDAY, "Europe/Berlin", [rule(1, time(9), time(12))], [], [], 10)
    assert windows[0].start == at(8)
    assert windows[0].end == at(11)


# ============================================================================
# Candidates and slots
# ============================================================================

def test_candidates_include_last_start_that_fits():
    starts = candidate_starts(window(9, 12), 60, 30)
    assert starts[0] == at(9)
    assert starts[-1] == at(11)
    assert len(starts) == 5


def test_window_shorter_than_service_yields_nothing():
    assert candidate_starts(window(9, 10), 90, 10) == []


def test_monday_morning_scenario():
    """09:00-12:00 window, 60 minute service, 10 minute steps, one booking 10:00-11:00"""
    span = ServiceSpan(duration_minutes=60)
    occupied = [Interval(at(10), at(11))]
    slots = generate_slots(span, [window(9, 12)], occupied, 10, 60, NOW)

    starts = [s.start for s in slots]
    assert starts == [at(9), at(11)]
    assert all(s.end - s.start == timedelta(minutes=60) for s in slots)
    assert slots[0].to_dict() == {
        "date": "2030-01-07",
        "start": "2030-01-07T09:00:00.000Z",
        "end": "2030-01-07T10:00:00.000Z",
    }


def test_buffers_keep_distance_from_occupied_time():
    span = ServiceSpan(duration_minutes=30, buffer_before_minutes=10, buffer_after_minutes=20)
    occupied = [Interval(at(10), at(10, 30))]
    slots = generate_slots(span, [window(9, 12)], occupied, 10, 0, NOW)

    for slot in slots:
        block_start = slot.start - timedelta(minutes=10)
        block_end = slot.end + timedelta(minutes=20)
        assert not (block_start < at(10, 30) and block_end > at(10))
        assert block_start >= at(9)
        assert block_end <= at(12)

    starts = [s.start for s in slots]
    # Service starts after the leading buffer
    assert starts[0] == at(9, 10)
    assert at(9, 10) in starts
    assert at(9, 20) not in starts
    assert at(10, 40) in starts


def test_every_slot_is_inside_its_window_and_free():
    span = ServiceSpan(duration_minutes=45, buffer_after_minutes=15)
    windows = [window(9, 12), window(14, 18)]
    occupied = [Interval(at(9, 30), at(10, 15)), Interval(at(15), at(16))]
    slots = generate_slots(span, windows, occupied, 10, 0, NOW)

    assert slots
    for slot in slots:
        block_end = slot.end + timedelta(minutes=15)
        assert any(w.start <= slot.start and block_end <= w.end for w in windows)
        assert not any(o.overlaps(slot.start, block_end) for o in occupied)


def test_lead_time_boundary():
    span = ServiceSpan(duration_minutes=30)
    now = at(8)
    lead = 60

    exactly = generate_slots(span, [window(9, 10)], [], 30, lead, now)
    assert exactly[0].start == at(9)

    just_late = generate_slots(span, [window(9, 10)], [], 30, lead, now + timedelta(milliseconds=1))
    assert [s.start for s in just_late] == [at(9, 30)]


def test_overlapping_windows_do_not_duplicate_slots():
    span = ServiceSpan(duration_minutes=30)
    slots = generate_slots(span, [window(9, 11), window(10, 12)], [], 30, 0, NOW)
    starts = [s.start for s in slots]
    assert len(starts) == len(set(starts))
    assert starts == sorted(starts)


def test_slots_are_labelled_with_local_date():
    tokyo_window = TimeWindow(start=at(23), end=at(23, 59), granularity_minutes=30)
    slots = generate_slots(ServiceSpan(duration_minutes=30), [tokyo_window], [], 30, 0, NOW, "Asia/Tokyo")
    assert slots[0].date == date(2030, 1, 8)


def test_combined_span_takes_outer_buffers():
    first = SimpleNamespace(duration_minutes=30, buffer_before_minutes=5, buffer_after_minutes=50)
    second = SimpleNamespace(duration_minutes=45, buffer_before_minutes=40, buffer_after_minutes=15)
    span = ServiceSpan.combine([first, second])
    assert span == ServiceSpan(duration_minutes=75, buffer_before_minutes=5, buffer_after_minutes=15)
    assert span.total_minutes == 95


def test_fits_any_window():
    windows = [window(9, 12)]
    assert fits_any_window(at(11), at(12), windows)
    assert not fits_any_window(at(11, 30), at(12, 30), windows)


# ============================================================================
# Alignment with the booking step
# ============================================================================

def test_align_up_moves_to_next_local_boundary():
    assert align_up(at(9, 5), 10) == at(9, 10)
    assert align_up(at(9, 10), 10) == at(9, 10)
    assert align_up(at(9, 10) + timedelta(seconds=1), 10) == at(9, 20)
    # Kathmandu is UTC+05:45, so 09:00 UTC reads 14:45 locally
    assert align_up(at(9), 10, "Asia/Kathmandu") == at(9, 5)


def test_odd_granularity_slots_are_aligned_to_booking_step():
    span = ServiceSpan(duration_minutes=30)
    slots = generate_slots(span, [window(9, 12, step=15)], [], 15, 0, NOW, align_minutes=10)

    assert slots
    assert all(is_aligned(s.start, 10, "UTC") for s in slots)
    starts = [s.start for s in slots]
    assert starts[:4] == [at(9), at(9, 20), at(9, 30), at(9, 50)]
    assert len(starts) == len(set(starts))


def test_off_boundary_window_start_is_snapped_forward():
    span = ServiceSpan(duration_minutes=60)
    off = TimeWindow(start=at(9, 5), end=at(12), granularity_minutes=10)
    slots = generate_slots(span, [off], [], 10, 0, NOW, align_minutes=10)

    starts = [s.start for s in slots]
    assert starts[0] == at(9, 10)
    assert starts[-1] == at(11)
    assert all(is_aligned(s, 10, "UTC") for s in starts)
    assert all(s.end <= at(12) for s in slots)


def test_leading_buffer_does_not_break_alignment():
    span = ServiceSpan(duration_minutes=30, buffer_before_minutes=5)
    slots = generate_slots(span, [window(9, 12)], [], 10, 0, NOW, align_minutes=10)

    assert slots[0].start == at(9, 10)
    assert all(is_aligned(s.start, 10, "UTC") for s in slots)
    assert all(s.start - timedelta(minutes=5) >= at(9) for s in slots)


def test_alignment_follows_local_clock():
    span = ServiceSpan(duration_minutes=30)
    slots = generate_slots(span, [window(9, 11)], [], 10, 0, NOW, "Asia/Kathmandu", align_minutes=10)

    assert slots[0].start == at(9, 5)
    assert all(is_aligned(s.start, 10, "Asia/Kathmandu") for s in slots)
