# masterbook/tasks/calendar_tasks.py
import logging
from uuid import UUID

from masterbook.config.celery_config import celery_app
from masterbook.config.database import get_db
from masterbook.models.booking import Booking
from masterbook.services.calendar.google_calendar_service import GoogleCalendarService

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, max_retries=3)
def sync_booking_to_calendar(self, booking_id: str):
    """Push a booking to the master's Google Calendar (create or update)"""
    db = next(get_db())
    try:
        booking = db.get(Booking, UUID(booking_id))
        if not booking:
            logger.error(f"Booking {booking_id} not found")
            return {"status": "failed", "reason": "booking_not_found"}

        mapping = GoogleCalendarService().sync_booking(db, booking)
        if mapping is None:
            return {"status": "skipped", "reason": "no_calendar_binding"}

        return {"status": "synced", "event_id": mapping.external_event_id}

    except Exception as exc:
        logger.error(f"Calendar sync failed for booking {booking_id}: {exc}")
        db.rollback()
        raise self.retry(exc=exc, countdown=60 * (self.request.retries + 1))

    finally:
        db.close()


@celery_app.task(bind=True, max_retries=3)
def remove_booking_from_calendar(self, master_id: str, booking_id: str):
    """Delete the mirrored event of a canceled booking"""
    db = next(get_db())
    try:
        removed = GoogleCalendarService().remove_booking(db, UUID(master_id), UUID(booking_id))
        return {"status": "removed" if removed else "skipped"}

    except Exception as exc:
        logger.error(f"Calendar removal failed for booking {booking_id}: {exc}")
        db.rollback()
        raise self.retry(exc=exc, countdown=60 * (self.request.retries + 1))

    finally:
        db.close()
