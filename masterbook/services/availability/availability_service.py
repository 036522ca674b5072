# ===== masterbook/services/availability/availability_service.py =====
from datetime import date, datetime
from typing import List, Optional, Sequence
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
import logging

from masterbook.config.settings import get_settings
from masterbook.models.availability import (
    AvailabilityRule,
    AvailabilityWindow,
    AvailabilityExclusion,
    MasterBlock,
)
from masterbook.models.booking import Booking, BookingStatus
from masterbook.models.calendar_sync import CalendarSyncBinding
from masterbook.models.master import Master
from masterbook.services.availability.slot_generator import (
    Interval,
    ServiceSpan,
    Slot,
    TimeWindow,
    generate_slots,
    windows_for_date,
)
from masterbook.services.booking.errors import (
    AvailabilityConflict,
    BookingError,
    InvalidDateRange,
    ValidationFailed,
    is_unique_violation,
)
from masterbook.services.catalog.catalog_service import CatalogService
from masterbook.services.master.master_service import MasterService
from masterbook.utils.time_windows import ensure_utc, iter_dates, parse_date, utc_now

logger = logging.getLogger(__name__)
settings = get_settings()

DEFAULT_NOTICE_MINUTES = 60


class AvailabilityService:
    """Working hours of a master and the slot query built on top of them"""

    # ========================================================================
    # Weekly rules
    # ========================================================================

    @staticmethod
    def list_rules(db: Session, master_id: UUID) -> List[AvailabilityRule]:
        return db.query(AvailabilityRule).filter(
            AvailabilityRule.master_id == master_id
        ).order_by(AvailabilityRule.day_of_week, AvailabilityRule.start_time).all()

    @staticmethod
    def create_rule(db: Session, master_id: UUID, **data) -> AvailabilityRule:
        rule = AvailabilityRule(master_id=master_id, **data)
        db.add(rule)
        db.commit()
        db.refresh(rule)
        return rule

    @staticmethod
    def update_rule(db: Session, master_id: UUID, rule_id: UUID, **changes) -> Optional[AvailabilityRule]:
        """Edit a rule in place; None if it is not this master's"""
        rule = db.query(AvailabilityRule).filter(
            AvailabilityRule.id == rule_id,
            AvailabilityRule.master_id == master_id
        ).first()
        if rule is None:
            return None

        for field, value in changes.items():
            if value is not None:
                setattr(rule, field, value)
        if rule.start_time >= rule.end_time:
            db.rollback()
            raise ValidationFailed("end_time must be after start_time")

        db.commit()
        db.refresh(rule)
        return rule

    @staticmethod
    def delete_rule(db: Session, master_id: UUID, rule_id: UUID) -> bool:
        deleted = db.query(AvailabilityRule).filter(
            AvailabilityRule.id == rule_id,
            AvailabilityRule.master_id == master_id
        ).delete(synchronize_session=False)
        db.commit()
        return deleted > 0

    # ========================================================================
    # Dated windows
    # ========================================================================

    @staticmethod
    def list_windows(db: Session, master_id: UUID, date_from: Optional[date] = None,
                     date_to: Optional[date] = None) -> List[AvailabilityWindow]:
        query = db.query(AvailabilityWindow).filter(AvailabilityWindow.master_id == master_id)
        if date_from:
            query = query.filter(AvailabilityWindow.date >= date_from)
        if date_to:
            query = query.filter(AvailabilityWindow.date <= date_to)
        return query.order_by(AvailabilityWindow.date, AvailabilityWindow.start_time).all()

    @staticmethod
    def create_window(db: Session, master_id: UUID, **data) -> AvailabilityWindow:
        window = AvailabilityWindow(master_id=master_id, **data)
        db.add(window)
        AvailabilityService._commit_unique(db, "Window already exists for this date and time")
        db.refresh(window)
        return window

    @staticmethod
    def delete_window(db: Session, master_id: UUID, window_id: UUID) -> bool:
        deleted = db.query(AvailabilityWindow).filter(
            AvailabilityWindow.id == window_id,
            AvailabilityWindow.master_id == master_id
        ).delete(synchronize_session=False)
        db.commit()
        return deleted > 0

    # ========================================================================
    # Excluded dates
    # ========================================================================

    @staticmethod
    def list_exclusions(db: Session, master_id: UUID) -> List[AvailabilityExclusion]:
        return db.query(AvailabilityExclusion).filter(
            AvailabilityExclusion.master_id == master_id
        ).order_by(AvailabilityExclusion.date).all()

    @staticmethod
    def create_exclusion(db: Session, master_id: UUID, **data) -> AvailabilityExclusion:
        exclusion = AvailabilityExclusion(master_id=master_id, **data)
        db.add(exclusion)
        AvailabilityService._commit_unique(db, "Exclusion for this date already exists")
        db.refresh(exclusion)
        return exclusion

    @staticmethod
    def delete_exclusion(db: Session, master_id: UUID, exclusion_id: UUID) -> bool:
        deleted = db.query(AvailabilityExclusion).filter(
            AvailabilityExclusion.id == exclusion_id,
            AvailabilityExclusion.master_id == master_id
        ).delete(synchronize_session=False)
        db.commit()
        return deleted > 0

    # ========================================================================
    # Manual blocks
    # ========================================================================

    @staticmethod
    def list_blocks(db: Session, master_id: UUID, since: Optional[datetime] = None) -> List[MasterBlock]:
        query = db.query(MasterBlock).filter(MasterBlock.master_id == master_id)
        if since:
            query = query.filter(MasterBlock.end_at > since)
        return query.order_by(MasterBlock.start_at).all()

    @staticmethod
    def create_block(db: Session, master_id: UUID, start_at: datetime, end_at: datetime,
                     title: Optional[str] = None) -> MasterBlock:
        block = MasterBlock(
            master_id=master_id,
            start_at=ensure_utc(start_at),
            end_at=ensure_utc(end_at),
            title=title,
        )
        db.add(block)
        db.commit()
        db.refresh(block)
        return block

    @staticmethod
    def update_block(db: Session, master_id: UUID, block_id: UUID, **changes) -> Optional[MasterBlock]:
        block = db.query(MasterBlock).filter(
            MasterBlock.id == block_id,
            MasterBlock.master_id == master_id
        ).first()
        if block is None:
            return None

        if changes.get("start_at") is not None:
            block.start_at = ensure_utc(changes["start_at"])
        if changes.get("end_at") is not None:
            block.end_at = ensure_utc(changes["end_at"])
        if changes.get("title") is not None:
            block.title = changes["title"]
        if block.start_at >= block.end_at:
            db.rollback()
            raise ValidationFailed("end_at must be after start_at")

        db.commit()
        db.refresh(block)
        return block

    @staticmethod
    def delete_block(db: Session, master_id: UUID, block_id: UUID) -> bool:
        deleted = db.query(MasterBlock).filter(
            MasterBlock.id == block_id,
            MasterBlock.master_id == master_id
        ).delete(synchronize_session=False)
        db.commit()
        return deleted > 0

    # ========================================================================
    # Windows and occupancy
    # ========================================================================

    @staticmethod
    def open_windows(db: Session, master: Master, date_from: date, date_to: date) -> List[TimeWindow]:
        """Absolute open windows for every local date in [date_from, date_to]"""
        rules = AvailabilityService.list_rules(db, master.id)
        windows = AvailabilityService.list_windows(db, master.id, date_from, date_to)
        excluded = {
            row.date for row in db.query(AvailabilityExclusion).filter(
                AvailabilityExclusion.master_id == master.id,
                AvailabilityExclusion.date.between(date_from, date_to)
            ).all()
        }

        result = []
        for day in iter_dates(date_from, date_to):
            result.extend(windows_for_date(
                day,
                master.timezone,
                rules,
                windows,
                excluded,
                settings.SLOT_STEP_MINUTES,
            ))
        return result

    @staticmethod
    def occupied_intervals(
            db: Session,
            master_id: UUID,
            range_start: datetime,
            range_end: datetime,
            exclude_booking_id: Optional[UUID] = None
    ) -> List[Interval]:
        """Non-canceled bookings and manual blocks overlapping [range_start, range_end)"""
        bookings = db.query(Booking.start_at, Booking.end_at).filter(
            Booking.master_id == master_id,
            Booking.status != BookingStatus.CANCELED.value,
            Booking.start_at < range_end,
            Booking.end_at > range_start
        )
        if exclude_booking_id is not None:
            bookings = bookings.filter(Booking.id != exclude_booking_id)

        blocks = db.query(MasterBlock.start_at, MasterBlock.end_at).filter(
            MasterBlock.master_id == master_id,
            MasterBlock.start_at < range_end,
            MasterBlock.end_at > range_start
        )

        return [Interval(row.start_at, row.end_at) for row in bookings.all()] + \
            [Interval(row.start_at, row.end_at) for row in blocks.all()]

    @staticmethod
    def external_busy_intervals(db: Session, master_id: UUID, date_from: date, date_to: date) -> List[Interval]:
        """Busy times from the connected calendar in hybrid mode; failures degrade to none"""
        binding = db.query(CalendarSyncBinding).filter_by(
            master_id=master_id,
            provider="google",
            sync_mode="hybrid"
        ).first()
        if not binding:
            return []

        from masterbook.services.calendar.google_calendar_service import GoogleCalendarService

        try:
            busy = GoogleCalendarService().pull_busy_times(db, master_id, date_from, date_to)
        except Exception as e:
            logger.warning(f"Could not pull busy times for master {master_id}: {e}")
            db.rollback()
            return []
        return [Interval(item["start"], item["end"]) for item in busy]

    @staticmethod
    def min_notice_minutes(db: Session, master_id: UUID) -> int:
        row = MasterService.peek_settings(db, master_id)
        if row is None or row.min_booking_notice_minutes is None:
            return DEFAULT_NOTICE_MINUTES
        return row.min_booking_notice_minutes

    # ========================================================================
    # Slot query
    # ========================================================================

    @staticmethod
    def validate_range(date_from, date_to) -> tuple:
        start = parse_date(date_from)
        end = parse_date(date_to)
        if start > end:
            raise InvalidDateRange("date_from must not be after date_to")
        if (end - start).days + 1 > settings.MAX_SLOT_RANGE_DAYS:
            raise InvalidDateRange(f"Date range is limited to {settings.MAX_SLOT_RANGE_DAYS} days")
        return start, end

    @staticmethod
    def get_slots(
            db: Session,
            master: Master,
            service_ids: Sequence[UUID],
            date_from,
            date_to,
            now: Optional[datetime] = None,
            include_external_busy: bool = True
    ) -> List[Slot]:
        """Bookable slots for the given services between two local dates (inclusive)"""
        start_date, end_date = AvailabilityService.validate_range(date_from, date_to)
        services = CatalogService.resolve_active(db, master.id, service_ids)
        span = ServiceSpan.combine(services)

        windows = AvailabilityService.open_windows(db, master, start_date, end_date)
        if not windows:
            return []

        range_start = min(w.start for w in windows)
        range_end = max(w.end for w in windows)
        occupied = AvailabilityService.occupied_intervals(db, master.id, range_start, range_end)
        if include_external_busy:
            occupied += AvailabilityService.external_busy_intervals(db, master.id, start_date, end_date)

        slots = generate_slots(
            span=span,
            windows=windows,
            occupied=occupied,
            granularity_minutes=settings.SLOT_STEP_MINUTES,
            min_lead_minutes=AvailabilityService.min_notice_minutes(db, master.id),
            now=now or utc_now(),
            timezone_name=master.timezone,
            align_minutes=settings.SLOT_STEP_MINUTES,
        )
        logger.info(
            f"Generated {len(slots)} slots for master {master.id} "
            f"({start_date} - {end_date}, {len(services)} services)"
        )
        return slots

    @staticmethod
    def _commit_unique(db: Session, message: str) -> None:
        try:
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            if is_unique_violation(exc):
                raise AvailabilityConflict(message) from exc
            raise BookingError("Invalid availability entry") from exc
