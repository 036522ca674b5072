# masterbook/services/reminder/reminder_service.py
"""
Client reminder scheduling.

Reminders are rows in booking_reminders keyed by (booking_id, remind_at), so
scheduling is idempotent. Delivery claims due rows with a single conditional
UPDATE; any number of workers can run it concurrently and each row is handed
to exactly one of them.
"""
import logging
from datetime import datetime, timedelta
from typing import Iterable, List, Optional
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.orm import Session, aliased

from masterbook.config.settings import get_settings
from masterbook.models.booking import Booking, BookingStatus
from masterbook.models.reminder import BookingReminder
from masterbook.services.master.master_service import MasterService
from masterbook.utils.time_windows import ensure_utc, get_zone, parse_clock, utc_now

logger = logging.getLogger(__name__)
settings = get_settings()


def reminder_times(start_at: datetime, offsets_hours: Iterable[int], now: datetime) -> List[datetime]:
    """start - h for every offset, keeping only moments strictly in the future"""
    start = ensure_utc(start_at)
    current = ensure_utc(now)
    times = set()
    for hours in offsets_hours:
        remind_at = start - timedelta(hours=int(hours))
        if remind_at > current:
            times.add(remind_at)
    return sorted(times)


def is_quiet_hours(
        moment: datetime,
        quiet_start: Optional[str],
        quiet_end: Optional[str],
        timezone_name: str = "UTC"
) -> bool:
    """
    Whether `moment` falls inside the quiet period, compared by minute of day
    in `timezone_name`. start > end wraps past midnight; end is exclusive.
    """
    if not quiet_start or not quiet_end:
        return False

    start = parse_clock(quiet_start)
    end = parse_clock(quiet_end)
    local = ensure_utc(moment).astimezone(get_zone(timezone_name))

    minute = local.hour * 60 + local.minute
    start_minute = start.hour * 60 + start.minute
    end_minute = end.hour * 60 + end.minute

    if start_minute == end_minute:
        return False
    if start_minute < end_minute:
        return start_minute <= minute < end_minute
    return minute >= start_minute or minute < end_minute


class ReminderService:

    @staticmethod
    def offsets_for_master(db: Session, master_id: UUID) -> List[int]:
        row = MasterService.peek_settings(db, master_id)
        if row is None or not row.reminder_hours:
            return list(settings.DEFAULT_REMINDER_HOURS)
        return [int(h) for h in row.reminder_hours]

    @staticmethod
    def schedule_reminders(db: Session, booking: Booking, now: Optional[datetime] = None) -> int:
        """Insert future reminders for a booking; rows that already exist are left alone"""
        offsets = ReminderService.offsets_for_master(db, booking.master_id)
        times = reminder_times(booking.start_at, offsets, now or utc_now())
        if not times:
            return 0

        stmt = insert(BookingReminder).values([
            {"booking_id": booking.id, "remind_at": remind_at, "sent": False}
            for remind_at in times
        ]).on_conflict_do_nothing(index_elements=["booking_id", "remind_at"])

        result = db.execute(stmt)
        db.commit()
        inserted = result.rowcount or 0
        logger.info(f"Scheduled {inserted} reminders for booking {booking.id}")
        return inserted

    @staticmethod
    def delete_unsent(db: Session, booking_id: UUID) -> int:
        """Drop pending reminders; delivered ones stay as history"""
        result = db.execute(
            delete(BookingReminder).where(
                BookingReminder.booking_id == booking_id,
                BookingReminder.sent == False
            )
        )
        db.commit()
        return result.rowcount or 0

    @staticmethod
    def claim_due(db: Session, now: Optional[datetime] = None, limit: Optional[int] = None) -> list:
        """
        Atomically mark due reminders as sent and return them.
        A row is returned to exactly one caller even with concurrent workers.
        """
        cutoff = now or utc_now()
        condition = [BookingReminder.sent == False, BookingReminder.remind_at <= cutoff]

        if limit:
            due = aliased(BookingReminder)
            due_ids = (
                select(due.id)
                .where(due.sent == False, due.remind_at <= cutoff)
                .order_by(due.remind_at)
                .limit(limit)
                .with_for_update(skip_locked=True)
            )
            condition.append(BookingReminder.id.in_(due_ids))

        stmt = (
            update(BookingReminder)
            .where(*condition)
            .values(sent=True)
            .returning(BookingReminder.id, BookingReminder.booking_id, BookingReminder.remind_at)
            .execution_options(synchronize_session=False)
        )
        rows = db.execute(stmt).all()
        db.commit()
        return rows

    @staticmethod
    def release(db: Session, reminder_id: UUID) -> None:
        """Put a claimed reminder back so the next tick picks it up again"""
        db.execute(
            update(BookingReminder)
            .where(BookingReminder.id == reminder_id)
            .values(sent=False)
            .execution_options(synchronize_session=False)
        )
        db.commit()

    @staticmethod
    def rebuild_for_master(db: Session, master_id: UUID, now: Optional[datetime] = None) -> int:
        """Re-derive reminders of every future confirmed booking, e.g. after offsets changed"""
        current = now or utc_now()
        bookings = db.query(Booking).filter(
            Booking.master_id == master_id,
            Booking.status == BookingStatus.CONFIRMED.value,
            Booking.start_at > current
        ).all()

        total = 0
        for booking in bookings:
            ReminderService.delete_unsent(db, booking.id)
            total += ReminderService.schedule_reminders(db, booking, now=current)
        logger.info(f"Rebuilt {total} reminders for master {master_id}")
        return total
