# masterbook/tasks/notification_tasks.py
import logging
from uuid import UUID

from masterbook.config.celery_config import celery_app
from masterbook.config.database import get_db
from masterbook.services.notification.errors import PermanentDeliveryFailure, RetryableDeliveryFailure
from masterbook.services.notification.notification_service import NotificationService

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, max_retries=3)
def notify_master_booking_event(self, booking_id: str, event_type: str):
    """
    Tell the master about a booking made, moved or canceled by a client

    Args:
        booking_id: Booking UUID
        event_type: "created", "updated" or "canceled"
    """
    db = next(get_db())
    try:
        sent = NotificationService().notify_master(db, UUID(booking_id), event_type)
        return {"status": "sent" if sent else "skipped", "booking_id": booking_id}

    except RetryableDeliveryFailure as exc:
        logger.warning(f"Master notification for booking {booking_id} failed, retrying: {exc}")
        raise self.retry(exc=exc, countdown=60 * (2 ** self.request.retries))

    except PermanentDeliveryFailure as exc:
        logger.error(f"Master notification for booking {booking_id} rejected: {exc}")
        return {"status": "failed", "booking_id": booking_id, "reason": str(exc)}

    finally:
        db.close()


@celery_app.task(bind=True, max_retries=3)
def notify_client_booking_event(self, booking_id: str, event_type: str):
    """Tell the client the master confirmed, moved or canceled their booking"""
    db = next(get_db())
    try:
        sent = NotificationService().notify_client(db, UUID(booking_id), event_type)
        return {"status": "sent" if sent else "skipped", "booking_id": booking_id}

    except RetryableDeliveryFailure as exc:
        logger.warning(f"Client notification for booking {booking_id} failed, retrying: {exc}")
        raise self.retry(exc=exc, countdown=60 * (2 ** self.request.retries))

    except PermanentDeliveryFailure as exc:
        logger.error(f"Client notification for booking {booking_id} rejected: {exc}")
        return {"status": "failed", "booking_id": booking_id, "reason": str(exc)}

    finally:
        db.close()
