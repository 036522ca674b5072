# masterbook/services/reminder/reminder_worker.py
"""
One delivery pass over due reminders.

Claimed reminders stay marked as sent unless delivery fails transiently, in
which case the claim is released and the next tick tries again. An unexpected
error on one reminder releases it too, and the pass moves on to the next one.
Transient failures are retried on every tick without backoff or an attempt cap.
"""
import logging
from datetime import datetime
from typing import Dict, Optional

from sqlalchemy.orm import Session

from masterbook.models.booking import Booking, BookingStatus
from masterbook.services.master.master_service import MasterService
from masterbook.services.notification.errors import PermanentDeliveryFailure, RetryableDeliveryFailure
from masterbook.services.notification.notification_service import NotificationService
from masterbook.services.reminder.reminder_service import ReminderService, is_quiet_hours
from masterbook.utils.time_windows import utc_now

logger = logging.getLogger(__name__)


def run_reminder_worker_tick(
        db: Session,
        notifier: Optional[NotificationService] = None,
        now: Optional[datetime] = None
) -> Dict[str, int]:
    """Claim and deliver every due reminder; `processed` counts all claimed rows"""
    notifier = notifier or NotificationService()
    current = now or utc_now()

    claimed = ReminderService.claim_due(db, now=current)
    stats = {"processed": 0, "delivered": 0, "skipped": 0, "requeued": 0, "failed": 0}

    for reminder in claimed:
        stats["processed"] += 1
        try:
            outcome = _deliver(db, notifier, reminder, current)
        except Exception as e:
            logger.exception(f"Reminder {reminder.id} crashed, releasing it for the next tick: {e}")
            db.rollback()
            ReminderService.release(db, reminder.id)
            outcome = "requeued"
        stats[outcome] += 1

    if stats["processed"]:
        logger.info(f"Reminder tick finished: {stats}")
    return stats


def _deliver(db: Session, notifier: NotificationService, reminder, current: datetime) -> str:
    """Send one claimed reminder and name the stats bucket it lands in"""
    booking = db.get(Booking, reminder.booking_id)
    if not booking or booking.status == BookingStatus.CANCELED.value:
        logger.info(f"Reminder {reminder.id} skipped, booking missing or canceled")
        return "skipped"

    _log_quiet_hours(db, booking, current)

    try:
        delivered = notifier.send_client_reminder(booking, reminder.remind_at)
    except RetryableDeliveryFailure as e:
        logger.warning(f"Reminder {reminder.id} delivery failed, will retry: {e}")
        ReminderService.release(db, reminder.id)
        return "requeued"
    except PermanentDeliveryFailure as e:
        logger.error(f"Reminder {reminder.id} rejected by provider, giving up: {e}")
        return "failed"

    return "delivered" if delivered else "skipped"


def _log_quiet_hours(db: Session, booking: Booking, moment: datetime) -> None:
    # TODO: hold deliveries until quiet hours end once masters can opt in to it
    settings_row = MasterService.peek_settings(db, booking.master_id)
    if not settings_row:
        return
    timezone_name = booking.master.timezone if booking.master else "UTC"
    if is_quiet_hours(moment, settings_row.quiet_hours_start, settings_row.quiet_hours_end, timezone_name):
        logger.info(f"Delivering reminder for booking {booking.id} inside the master's quiet hours")
