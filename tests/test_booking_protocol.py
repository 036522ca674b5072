"""Reservation protocol against a real PostgreSQL database"""
import threading
from datetime import datetime, time, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from masterbook.models import AvailabilityRule, AvailabilityWindow, Booking, BookingReminder, Master, MasterBlock, User
from masterbook.models.booking import BookingSource, BookingStatus
from masterbook.services.availability.availability_service import AvailabilityService
from masterbook.services.booking.booking_service import Actor, BookingService
from masterbook.services.booking.errors import (
    ActiveBookingLimitExceeded,
    AvailabilityConflict,
    BookingNotFound,
    InsufficientNotice,
    InvalidState,
    MisalignedStart,
    OutsideAvailability,
    PolicyViolation,
    ServiceNotFound,
    SlotConflict,
    ValidationFailed,
    is_exclusion_violation,
)
from masterbook.services.reminder.reminder_service import ReminderService
from tests.conftest import MONDAY, NOW, make_master, make_service, make_user

pytestmark = pytest.mark.db

UTC = timezone.utc


def at(hour, minute=0):
    return datetime(MONDAY.year, MONDAY.month, MONDAY.day, hour, minute, tzinfo=UTC)


def book(db, master, client, service, start, **kwargs):
    kwargs.setdefault("now", NOW)
    return BookingService.create_booking(db, master, client, [service.id], start, **kwargs)


def free_starts(db, master, service):
    slots = AvailabilityService.get_slots(
        db, master, [service.id], MONDAY, MONDAY, now=NOW, include_external_busy=False
    )
    return [slot.start for slot in slots]


# ============================================================================
# Exclusion constraint
# ============================================================================

def test_constraint_rejects_overlapping_rows(db_session):
    master = make_master(db_session)
    service = make_service(db_session, master)
    client = make_user(db_session)

    for start in (at(9), at(9, 30)):
        db_session.add(Booking(
            master_id=master.id, client_id=client.id, service_id=service.id, extra_service_ids=[],
            start_at=start, end_at=start + timedelta(hours=1), status=BookingStatus.CONFIRMED.value,
        ))

    with pytest.raises(IntegrityError) as excinfo:
        db_session.commit()
    assert is_exclusion_violation(excinfo.value)
    db_session.rollback()


def test_adjacent_and_canceled_rows_do_not_conflict(db_session):
    master = make_master(db_session)
    service = make_service(db_session, master)
    client = make_user(db_session)

    rows = [
        (at(9), at(10), BookingStatus.CONFIRMED.value),
        (at(10), at(11), BookingStatus.PENDING.value),
        (at(10), at(11), BookingStatus.CANCELED.value),
    ]
    for start, end, status in rows:
        db_session.add(Booking(
            master_id=master.id, client_id=client.id, service_id=service.id, extra_service_ids=[],
            start_at=start, end_at=end, status=status,
        ))
    db_session.commit()

    assert db_session.query(Booking).filter(Booking.master_id == master.id).count() == 3


# ============================================================================
# Create
# ============================================================================

def test_booked_slot_disappears_and_returns_after_cancel(db_session):
    master = make_master(db_session)
    service = make_service(db_session, master)
    client = make_user(db_session)

    assert free_starts(db_session, master, service)[0] == at(9)

    booking = book(db_session, master, client, service, at(10))
    assert booking.status == BookingStatus.CONFIRMED.value
    assert booking.end_at == at(11)
    starts = free_starts(db_session, master, service)
    assert at(10) not in starts
    assert at(9, 10) not in starts
    assert at(9) in starts and at(11) in starts

    BookingService.cancel_booking(db_session, booking.id, Actor.client(client), now=NOW)
    assert at(10) in free_starts(db_session, master, service)


def test_monday_scenario_with_hourly_slots(db_session):
    master = make_master(db_session)
    for rule in db_session.query(AvailabilityRule).filter_by(master_id=master.id):
        rule.slot_granularity_minutes = 60
    db_session.commit()
    service = make_service(db_session, master)
    client = make_user(db_session)

    assert free_starts(db_session, master, service) == [at(9), at(10), at(11)]

    booking = book(db_session, master, client, service, at(10))
    assert free_starts(db_session, master, service) == [at(9), at(11)]

    BookingService.cancel_booking(db_session, booking.id, Actor.client(client), now=NOW)
    assert free_starts(db_session, master, service) == [at(9), at(10), at(11)]


def test_second_client_gets_slot_conflict(db_session):
    master = make_master(db_session)
    service = make_service(db_session, master)
    book(db_session, master, make_user(db_session), service, at(9))

    with pytest.raises(SlotConflict):
        book(db_session, master, make_user(db_session), service, at(9, 30))


def test_blocks_remove_slots(db_session):
    master = make_master(db_session)
    service = make_service(db_session, master)
    db_session.add(MasterBlock(master_id=master.id, start_at=at(9), end_at=at(11)))
    db_session.commit()

    assert free_starts(db_session, master, service) == [at(11)]


def test_client_cannot_book_into_a_block(db_session):
    master = make_master(db_session)
    service = make_service(db_session, master)
    db_session.add(MasterBlock(master_id=master.id, start_at=at(9, 30), end_at=at(10)))
    db_session.commit()

    with pytest.raises(SlotConflict):
        book(db_session, master, make_user(db_session), service, at(9))


def test_client_booking_respects_service_buffers(db_session):
    master = make_master(db_session)
    plain = make_service(db_session, master)
    buffered = make_service(db_session, master, duration=60, after=20, name="Coloring")
    book(db_session, master, make_user(db_session), plain, at(10))

    # 09:00-10:00 itself is free, the trailing 20 minutes are not
    with pytest.raises(SlotConflict):
        book(db_session, master, make_user(db_session), buffered, at(9))
    assert at(9) not in free_starts(db_session, master, buffered)


def test_master_can_book_over_a_block(db_session):
    master = make_master(db_session)
    service = make_service(db_session, master)
    db_session.add(MasterBlock(master_id=master.id, start_at=at(9), end_at=at(11)))
    db_session.commit()

    booking = book(
        db_session, master, make_user(db_session), service, at(9),
        source=BookingSource.ADMIN_CREATED.value,
    )
    assert booking.start_at == at(9)


def test_every_offered_slot_from_an_off_step_window_can_be_booked(db_session):
    master = make_master(db_session)
    service = make_service(db_session, master)
    db_session.add(AvailabilityWindow(master_id=master.id, date=MONDAY, start_time=time(9, 5), end_time=time(12)))
    db_session.commit()

    starts = free_starts(db_session, master, service)
    assert starts[0] == at(9, 10)
    assert starts[-1] == at(11)

    book(db_session, master, make_user(db_session), service, starts[0])
    book(db_session, master, make_user(db_session), service, starts[-1])


def test_legacy_odd_granularity_rule_offers_bookable_slots(db_session):
    master = make_master(db_session)
    service = make_service(db_session, master, duration=30)
    rule = db_session.query(AvailabilityRule).filter_by(master_id=master.id).one()
    rule.slot_granularity_minutes = 15
    db_session.commit()

    starts = free_starts(db_session, master, service)
    assert at(9, 20) in starts
    assert at(9, 15) not in starts
    for start in (at(9, 20), at(9, 50)):
        book(db_session, master, make_user(db_session), service, start)


def test_explicit_window_replaces_weekly_rule(db_session):
    master = make_master(db_session)
    service = make_service(db_session, master)
    db_session.add(AvailabilityWindow(master_id=master.id, date=MONDAY, start_time=time(14), end_time=time(15)))
    db_session.commit()

    assert free_starts(db_session, master, service) == [at(14)]
    with pytest.raises(OutsideAvailability):
        book(db_session, master, make_user(db_session), service, at(9))


@pytest.mark.parametrize("start, error", [
    (at(9, 5), MisalignedStart),
    (at(11, 30), OutsideAvailability),
    (at(7), OutsideAvailability),
])
def test_invalid_starts_are_rejected(db_session, start, error):
    master = make_master(db_session)
    service = make_service(db_session, master)
    with pytest.raises(error):
        book(db_session, master, make_user(db_session), service, start)


def test_notice_is_enforced(db_session):
    master = make_master(db_session, notice=120)
    service = make_service(db_session, master)
    with pytest.raises(InsufficientNotice):
        book(db_session, master, make_user(db_session), service, at(9), now=at(7, 30))


def test_inactive_service_cannot_be_booked(db_session):
    master = make_master(db_session)
    service = make_service(db_session, master)
    service.is_active = False
    db_session.commit()
    with pytest.raises(ServiceNotFound):
        book(db_session, master, make_user(db_session), service, at(9))


def test_active_booking_limit(db_session):
    master = make_master(db_session)
    service = make_service(db_session, master, duration=30)
    client = make_user(db_session)

    for hour in (9, 10, 11):
        book(db_session, master, client, service, at(hour))

    with pytest.raises(ActiveBookingLimitExceeded):
        book(db_session, master, client, service, at(11, 30))


def test_first_visit_discount(db_session):
    master = make_master(db_session, discount=10)
    service = make_service(db_session, master, duration=30, price=Decimal("50.00"))
    client = make_user(db_session)

    first = book(db_session, master, client, service, at(9))
    second = book(db_session, master, client, service, at(10))

    assert first.discount_percent == 10
    assert first.final_price == Decimal("45.00")
    assert second.discount_percent == 0
    assert second.final_price == Decimal("50.00")


def test_master_can_book_outside_hours(db_session):
    master = make_master(db_session)
    service = make_service(db_session, master)

    booking = book(
        db_session, master, make_user(db_session), service, at(18),
        source=BookingSource.ADMIN_CREATED.value, status=BookingStatus.PENDING.value,
    )

    assert booking.status == BookingStatus.PENDING.value
    assert booking.source == BookingSource.ADMIN_CREATED.value


def test_multi_service_booking_spans_all_services(db_session):
    master = make_master(db_session)
    cut = make_service(db_session, master, duration=30, name="Haircut")
    color = make_service(db_session, master, duration=60, name="Coloring")

    booking = BookingService.create_booking(
        db_session, master, make_user(db_session), [cut.id, color.id], at(9), now=NOW
    )

    assert booking.end_at == at(10, 30)
    assert booking.all_service_ids == [str(cut.id), str(color.id)]


# ============================================================================
# Reschedule / cancel / status
# ============================================================================

def test_reschedule_moves_booking_and_keeps_length(db_session):
    master = make_master(db_session)
    service = make_service(db_session, master)
    client = make_user(db_session)
    booking = book(db_session, master, client, service, at(9))

    moved = BookingService.reschedule_booking(db_session, booking.id, at(10, 30), Actor.client(client), now=NOW)

    assert moved.start_at == at(10, 30)
    assert moved.end_at == at(11, 30)
    assert at(9) in free_starts(db_session, master, service)


def test_reschedule_onto_another_booking_conflicts(db_session):
    master = make_master(db_session)
    service = make_service(db_session, master)
    client = make_user(db_session)
    first = book(db_session, master, client, service, at(9))
    book(db_session, master, make_user(db_session), service, at(10))

    with pytest.raises(SlotConflict):
        BookingService.reschedule_booking(db_session, first.id, at(9, 30), Actor.client(client), now=NOW)

    db_session.expire_all()
    assert db_session.get(Booking, first.id).start_at == at(9)


def test_client_cannot_reschedule_into_a_block(db_session):
    master = make_master(db_session)
    service = make_service(db_session, master)
    client = make_user(db_session)
    booking = book(db_session, master, client, service, at(9))
    db_session.add(MasterBlock(master_id=master.id, start_at=at(10, 30), end_at=at(11)))
    db_session.commit()

    with pytest.raises(SlotConflict):
        BookingService.reschedule_booking(db_session, booking.id, at(10), Actor.client(client), now=NOW)

    moved = BookingService.reschedule_booking(db_session, booking.id, at(10), Actor.master(master), now=NOW)
    assert moved.start_at == at(10)


def test_reschedule_can_overlap_its_own_old_time(db_session):
    master = make_master(db_session)
    service = make_service(db_session, master)
    client = make_user(db_session)
    booking = book(db_session, master, client, service, at(9))

    moved = BookingService.reschedule_booking(db_session, booking.id, at(9, 30), Actor.client(client), now=NOW)

    assert moved.start_at == at(9, 30)


def test_client_changes_are_bound_by_cancel_policy(db_session):
    master = make_master(db_session, cancel_policy_hours=24)
    service = make_service(db_session, master)
    client = make_user(db_session)
    booking = book(db_session, master, client, service, at(9))
    late = at(9) - timedelta(hours=23)

    with pytest.raises(PolicyViolation):
        BookingService.cancel_booking(db_session, booking.id, Actor.client(client), now=late)
    with pytest.raises(PolicyViolation):
        BookingService.reschedule_booking(db_session, booking.id, at(10), Actor.client(client), now=late)

    # The master is not bound by the policy
    canceled = BookingService.cancel_booking(db_session, booking.id, Actor.master(master), now=late)
    assert canceled.status == BookingStatus.CANCELED.value


def test_terminal_bookings_cannot_change(db_session):
    master = make_master(db_session)
    service = make_service(db_session, master)
    client = make_user(db_session)
    booking = book(db_session, master, client, service, at(9))
    BookingService.cancel_booking(db_session, booking.id, Actor.client(client), now=NOW)

    with pytest.raises(InvalidState):
        BookingService.cancel_booking(db_session, booking.id, Actor.client(client), now=NOW)
    with pytest.raises(InvalidState):
        BookingService.reschedule_booking(db_session, booking.id, at(10), Actor.client(client), now=NOW)


def test_master_status_transitions(db_session):
    master = make_master(db_session)
    service = make_service(db_session, master)
    booking = book(
        db_session, master, make_user(db_session), service, at(9),
        source=BookingSource.ADMIN_CREATED.value, status=BookingStatus.PENDING.value,
    )

    confirmed = BookingService.update_booking_status(db_session, master, booking.id, status="confirmed")
    assert confirmed.status == BookingStatus.CONFIRMED.value

    completed = BookingService.update_booking_status(db_session, master, booking.id, status="completed",
                                                     master_note="paid cash")
    assert completed.status == BookingStatus.COMPLETED.value
    assert completed.master_note == "paid cash"

    with pytest.raises(InvalidState):
        BookingService.update_booking_status(db_session, master, booking.id, status="confirmed")


def test_other_clients_cannot_see_booking(db_session):
    master = make_master(db_session)
    service = make_service(db_session, master)
    booking = book(db_session, master, make_user(db_session), service, at(9))

    with pytest.raises(BookingNotFound):
        BookingService.cancel_booking(db_session, booking.id, Actor.client(make_user(db_session)), now=NOW)


# ============================================================================
# Reminders
# ============================================================================

def test_scheduling_reminders_is_idempotent(db_session):
    master = make_master(db_session)
    service = make_service(db_session, master)
    booking = book(db_session, master, make_user(db_session), service, at(9))

    assert ReminderService.schedule_reminders(db_session, booking, now=NOW) == 2
    assert ReminderService.schedule_reminders(db_session, booking, now=NOW) == 0

    times = sorted(r.remind_at for r in db_session.query(BookingReminder).filter_by(booking_id=booking.id))
    assert times == [at(9) - timedelta(hours=24), at(9) - timedelta(hours=2)]


def test_claimed_reminders_are_not_claimed_again(db_session):
    master = make_master(db_session)
    service = make_service(db_session, master)
    booking = book(db_session, master, make_user(db_session), service, at(9))
    ReminderService.schedule_reminders(db_session, booking, now=NOW)

    first = ReminderService.claim_due(db_session, now=at(8))
    second = ReminderService.claim_due(db_session, now=at(8))

    assert len(first) == 2
    assert second == []

    ReminderService.release(db_session, first[0].id)
    assert [r.id for r in ReminderService.claim_due(db_session, now=at(8))] == [first[0].id]


def test_cancel_keeps_sent_reminders_only(db_session):
    master = make_master(db_session)
    service = make_service(db_session, master)
    booking = book(db_session, master, make_user(db_session), service, at(9))
    ReminderService.schedule_reminders(db_session, booking, now=NOW)
    ReminderService.claim_due(db_session, now=at(9) - timedelta(hours=20))

    assert ReminderService.delete_unsent(db_session, booking.id) == 1
    remaining = db_session.query(BookingReminder).filter_by(booking_id=booking.id).all()
    assert [r.sent for r in remaining] == [True]


# ============================================================================
# Concurrency (real commits)
# ============================================================================

def _run_in_threads(count, target):
    barrier = threading.Barrier(count)
    results = [None] * count

    def runner(index):
        barrier.wait()
        results[index] = target(index)

    threads = [threading.Thread(target=runner, args=(i,)) for i in range(count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return results


def test_concurrent_bookings_for_same_slot(committed_sessions):
    setup = committed_sessions()
    master = make_master(setup)
    service = make_service(setup, master)
    clients = [make_user(setup) for _ in range(4)]
    master_id, service_id = master.id, service.id
    client_ids = [c.id for c in clients]
    setup.close()

    def attempt(index):
        db = committed_sessions()
        try:
            BookingService.create_booking(
                db,
                db.get(Master, master_id),
                db.get(User, client_ids[index]),
                [service_id],
                at(9, 0 if index % 2 else 30),
                now=NOW,
            )
            return "ok"
        except SlotConflict:
            return "conflict"
        finally:
            db.close()

    results = _run_in_threads(4, attempt)

    assert results.count("ok") == 1
    assert results.count("conflict") == 3

    check = committed_sessions()
    active = check.query(Booking).filter(
        Booking.master_id == master_id, Booking.status != BookingStatus.CANCELED.value
    ).all()
    check.close()
    assert len(active) == 1


def test_concurrent_workers_claim_disjoint_reminders(committed_sessions):
    setup = committed_sessions()
    master = make_master(setup)
    service = make_service(setup, master, duration=30)
    for hour in (9, 10, 11):
        booking = book(setup, master, make_user(setup), service, at(hour))
        ReminderService.schedule_reminders(setup, booking, now=NOW)
    setup.close()

    def claim(_index):
        db = committed_sessions()
        try:
            return {row.id for row in ReminderService.claim_due(db, now=at(12))}
        finally:
            db.close()

    first, second, third = _run_in_threads(3, claim)

    assert not (first & second) and not (first & third) and not (second & third)
    assert len(first | second | third) == 6


# ============================================================================
# Availability
# ============================================================================

def test_duplicate_window_is_an_availability_conflict(db_session):
    master = make_master(db_session)
    AvailabilityService.create_window(db_session, master.id, date=MONDAY, start_time=time(14), end_time=time(15))

    with pytest.raises(AvailabilityConflict):
        AvailabilityService.create_window(db_session, master.id, date=MONDAY, start_time=time(14), end_time=time(15))


def test_rule_update_changes_offered_slots(db_session):
    master = make_master(db_session)
    service = make_service(db_session, master)
    rule = db_session.query(AvailabilityRule).filter_by(master_id=master.id).one()

    updated = AvailabilityService.update_rule(db_session, master.id, rule.id, end_time=time(13))

    assert updated.start_time == time(9)
    assert free_starts(db_session, master, service)[-1] == at(12)

    with pytest.raises(ValidationFailed):
        AvailabilityService.update_rule(db_session, master.id, rule.id, start_time=time(14))
    other = make_master(db_session)
    assert AvailabilityService.update_rule(db_session, other.id, rule.id, end_time=time(10)) is None


def test_block_update_moves_the_block(db_session):
    master = make_master(db_session)
    service = make_service(db_session, master)
    block = AvailabilityService.create_block(db_session, master.id, at(9), at(11), "Dentist")

    moved = AvailabilityService.update_block(db_session, master.id, block.id, start_at=at(10), end_at=at(12))

    assert (moved.start_at, moved.end_at, moved.title) == (at(10), at(12), "Dentist")
    assert free_starts(db_session, master, service) == [at(9)]
    with pytest.raises(ValidationFailed):
        AvailabilityService.update_block(db_session, master.id, block.id, end_at=at(9))


# ============================================================================
# Dashboard views
# ============================================================================

def test_master_schedule_lists_live_bookings_and_blocks(db_session):
    master = make_master(db_session)
    service = make_service(db_session, master, duration=30)
    kept = book(db_session, master, make_user(db_session), service, at(9))
    dropped = book(db_session, master, make_user(db_session), service, at(10))
    BookingService.cancel_booking(db_session, dropped.id, Actor.master(master), now=NOW)
    block = AvailabilityService.create_block(db_session, master.id, at(11), at(11, 30), "Lunch")
    AvailabilityService.create_block(db_session, master.id, at(11) + timedelta(days=1), at(12) + timedelta(days=1))

    view = BookingService.master_schedule(db_session, master, MONDAY, MONDAY)

    assert [b.id for b in view["bookings"]] == [kept.id]
    assert [b.id for b in view["blocks"]] == [block.id]


def test_client_list_and_history(db_session):
    master = make_master(db_session)
    service = make_service(db_session, master, duration=30)
    regular = make_user(db_session, name="Olga")
    newcomer = make_user(db_session, name="Ira")

    first = book(db_session, master, regular, service, at(9))
    second = book(db_session, master, regular, service, at(10))
    BookingService.cancel_booking(db_session, second.id, Actor.master(master), now=NOW)
    book(db_session, master, newcomer, service, at(11))

    clients = BookingService.list_master_clients(db_session, master, now=NOW)

    assert [c["user_id"] for c in clients] == [str(newcomer.id), str(regular.id)]
    assert clients[1]["bookings_total"] == 2
    assert clients[1]["upcoming_total"] == 1
    assert clients[1]["name"] == "Olga"
    assert datetime.fromisoformat(clients[0]["last_booking_at"]) == at(11)

    history = BookingService.list_client_history(db_session, master, regular.id)
    assert [b.id for b in history] == [second.id, first.id]
    assert BookingService.list_client_history(db_session, make_master(db_session), regular.id) == []
