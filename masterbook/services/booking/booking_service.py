# masterbook/services/booking/booking_service.py
"""
Booking reservation protocol: create, reschedule, cancel, status changes.

Overlap safety comes from the bookings_no_overlap_per_master exclusion
constraint. The application-level overlap checks below only exist to return
a clean SlotConflict early; a race that slips past them is still rejected by
the database at commit and reported as the same SlotConflict.

Side effects (reminders, calendar sync, notifications) are published as
domain events after commit and can never undo a committed booking.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Sequence
from uuid import UUID

from sqlalchemy import and_, case, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from masterbook.config.settings import get_settings
from masterbook.core.events import event_bus
from masterbook.models.availability import MasterBlock
from masterbook.models.booking import (
    ACTIVE_STATUSES,
    Booking,
    BookingSource,
    BookingStatus,
)
from masterbook.models.master import Master
from masterbook.models.service import Service
from masterbook.models.user import User
from masterbook.services.availability.availability_service import AvailabilityService
from masterbook.services.availability.slot_generator import Interval, ServiceSpan, fits_any_window
from masterbook.services.booking.errors import (
    ActiveBookingLimitExceeded,
    BookingNotFound,
    InsufficientNotice,
    InvalidState,
    MisalignedStart,
    OutsideAvailability,
    PolicyViolation,
    SlotConflict,
    ValidationFailed,
    is_exclusion_violation,
)
from masterbook.services.booking.events import (
    BookingCanceled,
    BookingClosed,
    BookingConfirmed,
    BookingCreated,
    BookingRescheduled,
)
from masterbook.services.catalog.catalog_service import CatalogService
from masterbook.services.master.master_service import MasterService
from masterbook.utils.time_windows import (
    ensure_utc,
    get_zone,
    local_date_of,
    local_datetime_to_instant,
    utc_now,
)

logger = logging.getLogger(__name__)
settings = get_settings()

CLIENT = "client"
MASTER = "master"

MASTER_TRANSITIONS = {
    BookingStatus.PENDING.value: {
        BookingStatus.CONFIRMED.value,
        BookingStatus.CANCELED.value,
        BookingStatus.COMPLETED.value,
        BookingStatus.NO_SHOW.value,
    },
    BookingStatus.CONFIRMED.value: {
        BookingStatus.CANCELED.value,
        BookingStatus.COMPLETED.value,
        BookingStatus.NO_SHOW.value,
    },
}


@dataclass(frozen=True)
class Actor:
    """Who is acting on a booking: the client who owns it or the master who serves it"""
    role: str
    user_id: Optional[UUID] = None
    master_id: Optional[UUID] = None

    @classmethod
    def client(cls, user: User) -> "Actor":
        return cls(role=CLIENT, user_id=user.id)

    @classmethod
    def master(cls, master: Master) -> "Actor":
        return cls(role=MASTER, user_id=master.user_id, master_id=master.id)


def hours_until(start_at: datetime, now: datetime) -> float:
    return (ensure_utc(start_at) - ensure_utc(now)).total_seconds() / 3600


def is_aligned(start_at: datetime, step_minutes: int, timezone_name: str) -> bool:
    """Start lands on a step boundary of the local clock, with no seconds"""
    local = ensure_utc(start_at).astimezone(get_zone(timezone_name))
    return local.second == 0 and local.microsecond == 0 and local.minute % step_minutes == 0


def price_quote(services: Sequence[Service], discount_percent: int) -> tuple:
    """(service_price, discount_percent, final_price) for the booked services"""
    prices = [s.price for s in services if s.price is not None]
    if not prices:
        return None, 0, None
    total = sum((Decimal(str(p)) for p in prices), Decimal("0"))
    final = (total * Decimal(100 - discount_percent) / Decimal(100)).quantize(
        Decimal("0.01"), rounding=ROUND_HALF_UP
    )
    return total, discount_percent, final


class BookingService:

    # ========================================================================
    # Create
    # ========================================================================

    @staticmethod
    def create_booking(
            db: Session,
            master: Master,
            client: User,
            service_ids: Sequence[UUID],
            start_at: datetime,
            client_note: Optional[str] = None,
            source: str = BookingSource.CLIENT_LINK.value,
            status: str = BookingStatus.CONFIRMED.value,
            master_note: Optional[str] = None,
            now: Optional[datetime] = None
    ) -> Booking:
        """
        Reserve a slot.

        Checks run in this order: services exist and are active, start is
        aligned to the slot step, minimum notice, the interval fits an open
        window, the client's active booking limit, then the overlap check and
        insert. Bookings entered by the master skip notice, window and limit.
        """
        current = now or utc_now()
        start = ensure_utc(start_at)
        admin_created = source == BookingSource.ADMIN_CREATED.value

        if status not in (BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value):
            raise ValidationFailed("New bookings must be pending or confirmed")

        # (a) services
        services = CatalogService.resolve_active(db, master.id, service_ids)
        duration = sum(s.duration_minutes for s in services)
        end = start + timedelta(minutes=duration)

        # (b) alignment
        if not is_aligned(start, settings.SLOT_STEP_MINUTES, master.timezone):
            raise MisalignedStart(
                f"Start time must be aligned to {settings.SLOT_STEP_MINUTES}-minute steps"
            )

        master_settings = MasterService.get_settings(db, master.id)

        if not admin_created:
            # (c) notice
            notice = master_settings.min_booking_notice_minutes or 0
            if start < current + timedelta(minutes=notice):
                raise InsufficientNotice(f"Bookings need at least {notice} minutes notice")

            # (d) working hours
            day = local_date_of(start, master.timezone)
            windows = AvailabilityService.open_windows(db, master, day, day)
            if not fits_any_window(start, end, windows):
                raise OutsideAvailability()

            # (e) active booking limit
            active = BookingService.count_active_bookings(db, master.id, client.id, current)
            if active >= settings.MAX_ACTIVE_BOOKINGS_PER_CLIENT:
                raise ActiveBookingLimitExceeded(
                    f"You already have {active} active bookings with this master"
                )

        # (f) pricing
        discount = 0
        if master_settings.first_visit_discount_percent and \
                BookingService.is_first_visit(db, master.id, client.id):
            discount = master_settings.first_visit_discount_percent
        service_price, discount, final_price = price_quote(services, discount)

        # (g) overlap pre-check, then let the exclusion constraint decide
        if admin_created:
            taken = BookingService.find_overlapping(db, master.id, start, end)
        else:
            taken = BookingService.busy_around(db, master.id, start, end, ServiceSpan.combine(services))
        if taken:
            raise SlotConflict()

        booking = Booking(
            master_id=master.id,
            client_id=client.id,
            service_id=services[0].id,
            extra_service_ids=[str(s.id) for s in services[1:]],
            start_at=start,
            end_at=end,
            status=status,
            source=source,
            client_note=client_note,
            master_note=master_note,
            service_price=service_price,
            discount_percent=discount,
            final_price=final_price,
        )
        db.add(booking)
        BookingService._commit_or_conflict(db)
        db.refresh(booking)

        logger.info(
            f"Created booking {booking.id} for master {master.id} at {start.isoformat()} "
            f"({source}, {status})"
        )

        actor = MASTER if admin_created else CLIENT
        if status == BookingStatus.CONFIRMED.value:
            event = BookingConfirmed(booking.id, master.id, status, actor=actor, newly_created=True)
        else:
            event = BookingCreated(booking.id, master.id, status, actor=actor)
        event_bus.publish(event, db)
        return booking

    # ========================================================================
    # Reschedule
    # ========================================================================

    @staticmethod
    def reschedule_booking(
            db: Session,
            booking_id: UUID,
            new_start_at: datetime,
            actor: Actor,
            now: Optional[datetime] = None
    ) -> Booking:
        """Move a booking, keeping its length; clients are bound by the cancel policy"""
        current = now or utc_now()
        booking = BookingService.get_for_actor(db, booking_id, actor)
        master = booking.master

        if booking.is_terminal:
            raise InvalidState(f"Cannot reschedule a {booking.status} booking")
        BookingService._check_policy(booking, master, actor, current)

        new_start = ensure_utc(new_start_at)
        new_end = new_start + (booking.end_at - booking.start_at)
        previous_start = booking.start_at

        if not is_aligned(new_start, settings.SLOT_STEP_MINUTES, master.timezone):
            raise MisalignedStart(
                f"Start time must be aligned to {settings.SLOT_STEP_MINUTES}-minute steps"
            )

        if actor.role == CLIENT:
            notice = MasterService.get_settings(db, master.id).min_booking_notice_minutes or 0
            if new_start < current + timedelta(minutes=notice):
                raise InsufficientNotice(f"Bookings need at least {notice} minutes notice")
            day = local_date_of(new_start, master.timezone)
            if not fits_any_window(new_start, new_end, AvailabilityService.open_windows(db, master, day, day)):
                raise OutsideAvailability()
            span = BookingService.booked_span(db, booking)
            if BookingService.busy_around(db, master.id, new_start, new_end, span, exclude_booking_id=booking.id):
                raise SlotConflict()

        # Lock overlapping rows so a concurrent reschedule into the same time waits for us
        conflicts = db.query(Booking).filter(
            Booking.master_id == booking.master_id,
            Booking.id != booking.id,
            Booking.status != BookingStatus.CANCELED.value,
            Booking.start_at < new_end,
            Booking.end_at > new_start
        ).with_for_update().all()
        if conflicts:
            db.rollback()
            raise SlotConflict()

        booking.start_at = new_start
        booking.end_at = new_end
        BookingService._commit_or_conflict(db)
        db.refresh(booking)

        logger.info(f"Rescheduled booking {booking.id} from {previous_start} to {new_start}")
        event_bus.publish(
            BookingRescheduled(
                booking.id, booking.master_id, booking.status,
                actor=actor.role, previous_start_at=previous_start
            ),
            db
        )
        return booking

    # ========================================================================
    # Cancel / status
    # ========================================================================

    @staticmethod
    def cancel_booking(
            db: Session,
            booking_id: UUID,
            actor: Actor,
            now: Optional[datetime] = None
    ) -> Booking:
        """Mark canceled; the row stays for history and frees the slot"""
        current = now or utc_now()
        booking = BookingService.get_for_actor(db, booking_id, actor)

        if booking.is_terminal:
            raise InvalidState(f"Cannot cancel a {booking.status} booking")
        BookingService._check_policy(booking, booking.master, actor, current)

        booking.status = BookingStatus.CANCELED.value
        booking.canceled_at = current
        db.commit()
        db.refresh(booking)

        logger.info(f"Booking {booking.id} canceled by {actor.role}")
        event_bus.publish(BookingCanceled(booking.id, booking.master_id, booking.status, actor=actor.role), db)
        return booking

    @staticmethod
    def update_booking_status(
            db: Session,
            master: Master,
            booking_id: UUID,
            status: Optional[str] = None,
            master_note: Optional[str] = None,
            now: Optional[datetime] = None
    ) -> Booking:
        """Master-side confirm / complete / no-show / cancel, and the private note"""
        actor = Actor.master(master)
        booking = BookingService.get_for_actor(db, booking_id, actor)

        if status is not None:
            status = BookingStatus(status).value
            if status == booking.status:
                status = None
            elif status not in MASTER_TRANSITIONS.get(booking.status, set()):
                raise InvalidState(f"Cannot change a {booking.status} booking to {status}")

        if status is None and master_note is None:
            return booking

        if master_note is not None:
            booking.master_note = master_note
        if status is not None:
            booking.status = status
            if status == BookingStatus.CANCELED.value:
                booking.canceled_at = now or utc_now()
        db.commit()
        db.refresh(booking)

        if status == BookingStatus.CONFIRMED.value:
            event = BookingConfirmed(booking.id, master.id, status, actor=MASTER)
        elif status == BookingStatus.CANCELED.value:
            event = BookingCanceled(booking.id, master.id, status, actor=MASTER)
        elif status in (BookingStatus.COMPLETED.value, BookingStatus.NO_SHOW.value):
            event = BookingClosed(booking.id, master.id, status, actor=MASTER)
        else:
            event = None

        if event is not None:
            logger.info(f"Booking {booking.id} is now {status}")
            event_bus.publish(event, db)
        return booking

    # ========================================================================
    # Queries
    # ========================================================================

    @staticmethod
    def get_for_actor(db: Session, booking_id: UUID, actor: Actor) -> Booking:
        query = db.query(Booking).filter(Booking.id == booking_id)
        if actor.role == MASTER:
            query = query.filter(Booking.master_id == actor.master_id)
        else:
            query = query.filter(Booking.client_id == actor.user_id)
        booking = query.first()
        if not booking:
            raise BookingNotFound()
        return booking

    @staticmethod
    def find_overlapping(db: Session, master_id: UUID, start: datetime, end: datetime,
                         exclude_booking_id: Optional[UUID] = None) -> List[Booking]:
        query = db.query(Booking).filter(
            Booking.master_id == master_id,
            Booking.status != BookingStatus.CANCELED.value,
            Booking.start_at < end,
            Booking.end_at > start
        )
        if exclude_booking_id is not None:
            query = query.filter(Booking.id != exclude_booking_id)
        return query.all()

    @staticmethod
    def busy_around(db: Session, master_id: UUID, start: datetime, end: datetime, span: ServiceSpan,
                    exclude_booking_id: Optional[UUID] = None) -> List[Interval]:
        """Bookings and blocks that touch the interval once the service buffers are added"""
        return AvailabilityService.occupied_intervals(
            db,
            master_id,
            start - timedelta(minutes=span.buffer_before_minutes),
            end + timedelta(minutes=span.buffer_after_minutes),
            exclude_booking_id=exclude_booking_id
        )

    @staticmethod
    def booked_span(db: Session, booking: Booking) -> ServiceSpan:
        """Buffers of the services already on a booking, archived ones included"""
        ids = [booking.service_id] + [UUID(str(i)) for i in (booking.extra_service_ids or [])]
        by_id = {s.id: s for s in db.query(Service).filter(Service.id.in_(ids)).all()}
        services = [by_id[i] for i in ids if i in by_id]
        if not services:
            return ServiceSpan(duration_minutes=int((booking.end_at - booking.start_at).total_seconds() // 60))
        return ServiceSpan.combine(services)

    @staticmethod
    def count_active_bookings(db: Session, master_id: UUID, client_id: UUID, now: datetime) -> int:
        return db.query(Booking).filter(
            Booking.master_id == master_id,
            Booking.client_id == client_id,
            Booking.status.in_(ACTIVE_STATUSES),
            Booking.start_at > now
        ).count()

    @staticmethod
    def is_first_visit(db: Session, master_id: UUID, client_id: UUID) -> bool:
        return db.query(Booking.id).filter(
            Booking.master_id == master_id,
            Booking.client_id == client_id,
            Booking.status != BookingStatus.CANCELED.value
        ).first() is None

    @staticmethod
    def list_client_bookings(db: Session, client_id: UUID, upcoming_only: bool = False,
                             now: Optional[datetime] = None) -> List[Booking]:
        query = db.query(Booking).filter(Booking.client_id == client_id)
        if upcoming_only:
            query = query.filter(Booking.start_at > (now or utc_now()))
        return query.order_by(Booking.start_at.desc()).all()

    @staticmethod
    def list_master_bookings(
            db: Session,
            master: Master,
            date_from: Optional[date] = None,
            date_to: Optional[date] = None,
            status: Optional[str] = None,
            skip: int = 0,
            limit: int = 100
    ) -> List[Booking]:
        query = db.query(Booking).filter(Booking.master_id == master.id)
        if date_from:
            query = query.filter(Booking.start_at >= local_datetime_to_instant(date_from, "00:00", master.timezone))
        if date_to:
            query = query.filter(
                Booking.start_at < local_datetime_to_instant(date_to + timedelta(days=1), "00:00", master.timezone)
            )
        if status:
            query = query.filter(Booking.status == status)
        return query.order_by(Booking.start_at.asc()).offset(skip).limit(limit).all()

    @staticmethod
    def master_schedule(db: Session, master: Master, date_from: date, date_to: date) -> dict:
        """Calendar view: live bookings and blocks overlapping the local date range"""
        range_start = local_datetime_to_instant(date_from, "00:00", master.timezone)
        range_end = local_datetime_to_instant(date_to + timedelta(days=1), "00:00", master.timezone)

        bookings = db.query(Booking).filter(
            Booking.master_id == master.id,
            Booking.status != BookingStatus.CANCELED.value,
            Booking.start_at < range_end,
            Booking.end_at > range_start
        ).order_by(Booking.start_at.asc()).all()

        blocks = db.query(MasterBlock).filter(
            MasterBlock.master_id == master.id,
            MasterBlock.start_at < range_end,
            MasterBlock.end_at > range_start
        ).order_by(MasterBlock.start_at.asc()).all()

        return {"bookings": bookings, "blocks": blocks}

    @staticmethod
    def list_master_clients(db: Session, master: Master, now: Optional[datetime] = None) -> List[dict]:
        """
        Everyone who has booked this master, most recent booking first.

        upcoming_total counts future bookings that are not canceled.
        """
        current = now or utc_now()
        upcoming = case(
            (and_(Booking.start_at >= current, Booking.status != BookingStatus.CANCELED.value), 1),
            else_=0
        )
        rows = db.query(
            User,
            func.count(Booking.id).label("bookings_total"),
            func.sum(upcoming).label("upcoming_total"),
            func.max(Booking.start_at).label("last_booking_at"),
        ).join(Booking, Booking.client_id == User.id).filter(
            Booking.master_id == master.id
        ).group_by(User.id).order_by(func.max(Booking.start_at).desc()).all()

        return [
            {
                "user_id": str(user.id),
                "username": user.username,
                "name": user.name,
                "bookings_total": int(total),
                "upcoming_total": int(upcoming_total or 0),
                "last_booking_at": last_at.isoformat() if last_at else None,
            }
            for user, total, upcoming_total, last_at in rows
        ]

    @staticmethod
    def list_client_history(db: Session, master: Master, client_id: UUID) -> List[Booking]:
        return db.query(Booking).filter(
            Booking.master_id == master.id,
            Booking.client_id == client_id
        ).order_by(Booking.start_at.desc()).all()

    # ========================================================================
    # Helpers
    # ========================================================================

    @staticmethod
    def _check_policy(booking: Booking, master: Master, actor: Actor, now: datetime) -> None:
        if actor.role != CLIENT:
            return
        policy = master.cancel_policy_hours or 0
        if hours_until(booking.start_at, now) < policy:
            raise PolicyViolation(f"Changes are not allowed less than {policy} hours before the start")

    @staticmethod
    def _commit_or_conflict(db: Session) -> None:
        try:
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            if is_exclusion_violation(exc):
                logger.info("Booking rejected by the no-overlap constraint")
                raise SlotConflict() from exc
            raise
