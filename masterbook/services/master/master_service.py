# masterbook/services/master/master_service.py
"""
Master profile, booking settings and the subscribable calendar feed token.
"""
import logging
from typing import Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from masterbook.config.settings import get_settings
from masterbook.models.master import Master, MasterSettings, generate_booking_slug, generate_feed_token
from masterbook.models.user import User
from masterbook.services.booking.errors import MasterNotFound, is_unique_violation

logger = logging.getLogger(__name__)
settings = get_settings()

SLUG_ATTEMPTS = 5


class MasterService:

    @staticmethod
    def get_by_slug(db: Session, slug: str) -> Master:
        master = db.query(Master).filter(Master.booking_slug == slug).first()
        if not master:
            raise MasterNotFound()
        return master

    @staticmethod
    def get_by_id(db: Session, master_id: UUID) -> Master:
        master = db.query(Master).filter(Master.id == master_id).first()
        if not master:
            raise MasterNotFound()
        return master

    @staticmethod
    def get_for_user(db: Session, user_id: UUID) -> Optional[Master]:
        return db.query(Master).filter(Master.user_id == user_id).first()

    @staticmethod
    def setup_master(
            db: Session,
            user: User,
            display_name: str,
            timezone: str = "UTC",
            cancel_policy_hours: int = 24
    ) -> Master:
        """Create the master profile for a user, or update it if it already exists"""
        master = MasterService.get_for_user(db, user.id)
        if master:
            master.display_name = display_name
            master.timezone = timezone
            master.cancel_policy_hours = cancel_policy_hours
            db.commit()
            db.refresh(master)
            return master

        for attempt in range(SLUG_ATTEMPTS):
            master = Master(
                user_id=user.id,
                display_name=display_name,
                timezone=timezone,
                cancel_policy_hours=cancel_policy_hours,
                booking_slug=generate_booking_slug(),
            )
            db.add(master)
            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                if is_unique_violation(exc) and attempt < SLUG_ATTEMPTS - 1:
                    logger.warning(f"Booking slug collision for user {user.id}, retrying")
                    continue
                raise
            db.refresh(master)
            logger.info(f"Created master {master.id} with slug {master.booking_slug}")
            return master

    @staticmethod
    def update_profile(db: Session, master: Master, **changes) -> Master:
        for field in ("display_name", "timezone", "cancel_policy_hours"):
            value = changes.get(field)
            if value is not None:
                setattr(master, field, value)
        db.commit()
        db.refresh(master)
        return master

    # ========================================================================
    # Settings
    # ========================================================================

    @staticmethod
    def get_settings(db: Session, master_id: UUID) -> MasterSettings:
        """Settings row for a master, created with defaults on first access"""
        row = db.query(MasterSettings).filter(MasterSettings.master_id == master_id).first()
        if row:
            return row

        row = MasterSettings(
            master_id=master_id,
            reminder_hours=list(settings.DEFAULT_REMINDER_HOURS),
            quiet_hours_start=None,
            quiet_hours_end=None,
            first_visit_discount_percent=15,
            min_booking_notice_minutes=60,
            apple_calendar_enabled=False,
            apple_calendar_token=None,
        )
        db.add(row)
        try:
            db.commit()
        except IntegrityError:
            # Created concurrently by another request
            db.rollback()
            return db.query(MasterSettings).filter(MasterSettings.master_id == master_id).one()
        db.refresh(row)
        return row

    @staticmethod
    def peek_settings(db: Session, master_id: UUID) -> Optional[MasterSettings]:
        """Settings row without creating one (read paths inside other transactions)"""
        return db.query(MasterSettings).filter(MasterSettings.master_id == master_id).first()

    @staticmethod
    def update_settings(db: Session, master_id: UUID, **changes) -> MasterSettings:
        row = MasterService.get_settings(db, master_id)

        if changes.get("reminder_hours") is not None:
            row.reminder_hours = list(changes["reminder_hours"])
        if changes.get("first_visit_discount_percent") is not None:
            row.first_visit_discount_percent = changes["first_visit_discount_percent"]
        if changes.get("min_booking_notice_minutes") is not None:
            row.min_booking_notice_minutes = changes["min_booking_notice_minutes"]

        # Quiet hours are replaced as a pair; an empty value clears them
        row.quiet_hours_start = changes.get("quiet_hours_start") or None
        row.quiet_hours_end = changes.get("quiet_hours_end") or None

        db.commit()
        db.refresh(row)
        logger.info(f"Updated settings for master {master_id}")
        return row

    # ========================================================================
    # Calendar feed token
    # ========================================================================

    @staticmethod
    def enable_calendar_feed(db: Session, master_id: UUID) -> MasterSettings:
        row = MasterService.get_settings(db, master_id)
        row.apple_calendar_enabled = True
        if not row.apple_calendar_token:
            row.apple_calendar_token = generate_feed_token()
        db.commit()
        db.refresh(row)
        return row

    @staticmethod
    def rotate_calendar_feed(db: Session, master_id: UUID) -> MasterSettings:
        """New token; subscribers holding the old link lose access"""
        row = MasterService.get_settings(db, master_id)
        row.apple_calendar_enabled = True
        row.apple_calendar_token = generate_feed_token()
        db.commit()
        db.refresh(row)
        return row

    @staticmethod
    def disable_calendar_feed(db: Session, master_id: UUID) -> MasterSettings:
        row = MasterService.get_settings(db, master_id)
        row.apple_calendar_enabled = False
        db.commit()
        db.refresh(row)
        return row
