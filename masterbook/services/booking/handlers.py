# masterbook/services/booking/handlers.py
"""
Subscribers reacting to booking lifecycle events.

Reminders are written inline with the publisher's session. Calendar sync and
Telegram notifications go through Celery so a slow provider never delays the
HTTP response.
"""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from masterbook.core.events import EventBus, event_bus
from masterbook.models.booking import Booking, BookingStatus
from masterbook.services.booking.events import (
    BookingCanceled,
    BookingClosed,
    BookingConfirmed,
    BookingCreated,
    BookingEvent,
    BookingRescheduled,
)
from masterbook.services.reminder.reminder_service import ReminderService
from masterbook.tasks.calendar_tasks import remove_booking_from_calendar, sync_booking_to_calendar
from masterbook.tasks.notification_tasks import notify_client_booking_event, notify_master_booking_event

logger = logging.getLogger(__name__)


def _load(db: Session, event: BookingEvent) -> Optional[Booking]:
    booking = db.query(Booking).filter(Booking.id == event.booking_id).first()
    if booking is None:
        logger.warning(f"Booking {event.booking_id} vanished before {type(event).__name__} was handled")
    return booking


# ============================================================================
# Reminders
# ============================================================================

def schedule_reminders_on_confirm(event: BookingConfirmed, db: Optional[Session]) -> None:
    if db is None:
        return
    booking = _load(db, event)
    if booking is not None and booking.status == BookingStatus.CONFIRMED.value:
        ReminderService.schedule_reminders(db, booking)


def reschedule_reminders(event: BookingRescheduled, db: Optional[Session]) -> None:
    if db is None:
        return
    ReminderService.delete_unsent(db, event.booking_id)
    booking = _load(db, event)
    if booking is not None and booking.status == BookingStatus.CONFIRMED.value:
        ReminderService.schedule_reminders(db, booking)


def drop_reminders(event: BookingEvent, db: Optional[Session]) -> None:
    if db is None:
        return
    removed = ReminderService.delete_unsent(db, event.booking_id)
    if removed:
        logger.info(f"Dropped {removed} pending reminders for booking {event.booking_id}")


# ============================================================================
# Calendar
# ============================================================================

def push_to_calendar(event: BookingEvent, db: Optional[Session]) -> None:
    sync_booking_to_calendar.delay(str(event.booking_id))


def remove_from_calendar(event: BookingCanceled, db: Optional[Session]) -> None:
    remove_booking_from_calendar.delay(str(event.master_id), str(event.booking_id))


# ============================================================================
# Notifications
# ============================================================================

def notify_master_created(event: BookingEvent, db: Optional[Session]) -> None:
    if isinstance(event, BookingConfirmed) and not event.newly_created:
        return
    if event.actor == "client":
        notify_master_booking_event.delay(str(event.booking_id), "created")


def notify_master_updated(event: BookingRescheduled, db: Optional[Session]) -> None:
    if event.actor == "client":
        notify_master_booking_event.delay(str(event.booking_id), "updated")


def notify_master_canceled(event: BookingCanceled, db: Optional[Session]) -> None:
    if event.actor == "client":
        notify_master_booking_event.delay(str(event.booking_id), "canceled")


def notify_client_of_master_action(event: BookingEvent, db: Optional[Session]) -> None:
    if event.actor != "master":
        return
    if isinstance(event, BookingConfirmed):
        if event.newly_created:
            return
        notify_client_booking_event.delay(str(event.booking_id), "confirmed")
    elif isinstance(event, BookingRescheduled):
        notify_client_booking_event.delay(str(event.booking_id), "updated")
    elif isinstance(event, BookingCanceled):
        notify_client_booking_event.delay(str(event.booking_id), "canceled")


def register_booking_handlers(bus: EventBus = event_bus) -> EventBus:
    """Wire every booking subscriber; calling it twice does not duplicate them"""
    bus.subscribe(BookingConfirmed, schedule_reminders_on_confirm)
    bus.subscribe(BookingRescheduled, reschedule_reminders)
    bus.subscribe(BookingCanceled, drop_reminders)
    bus.subscribe(BookingClosed, drop_reminders)

    for event_type in (BookingCreated, BookingConfirmed, BookingRescheduled, BookingClosed):
        bus.subscribe(event_type, push_to_calendar)
    bus.subscribe(BookingCanceled, remove_from_calendar)

    bus.subscribe(BookingCreated, notify_master_created)
    bus.subscribe(BookingConfirmed, notify_master_created)
    bus.subscribe(BookingRescheduled, notify_master_updated)
    bus.subscribe(BookingCanceled, notify_master_canceled)

    for event_type in (BookingConfirmed, BookingRescheduled, BookingCanceled):
        bus.subscribe(event_type, notify_client_of_master_action)

    logger.info("Booking event handlers registered")
    return bus
