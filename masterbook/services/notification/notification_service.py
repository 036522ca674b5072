# masterbook/services/notification/notification_service.py
"""Who gets told what about a booking"""
import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from masterbook.models.booking import Booking
from masterbook.services.notification.messages import (
    client_booking_message,
    client_reminder_message,
    master_booking_message,
)
from masterbook.services.notification.telegram_service import TelegramService

logger = logging.getLogger(__name__)


class NotificationService:
    def __init__(self, transport: Optional[TelegramService] = None):
        self.transport = transport or TelegramService()

    def notify_master(self, db: Session, booking_id: UUID, event_type: str) -> bool:
        """Tell the master about a created/updated/canceled booking"""
        booking = db.query(Booking).filter(Booking.id == booking_id).first()
        if not booking:
            logger.warning(f"Booking {booking_id} not found for master notification")
            return False

        master_user = booking.master.user if booking.master else None
        chat_id = master_user.telegram_chat_id if master_user else None
        if not chat_id:
            logger.info(f"Master of booking {booking_id} has no chat id, notification skipped")
            return False

        return self.transport.send_message(chat_id, master_booking_message(booking, event_type))

    def notify_client(self, db: Session, booking_id: UUID, event_type: str) -> bool:
        booking = db.query(Booking).filter(Booking.id == booking_id).first()
        if not booking:
            logger.warning(f"Booking {booking_id} not found for client notification")
            return False

        chat_id = booking.client.telegram_chat_id if booking.client else None
        if not chat_id:
            logger.info(f"Client of booking {booking_id} has no chat id, notification skipped")
            return False

        return self.transport.send_message(chat_id, client_booking_message(booking, event_type))

    def send_client_reminder(self, booking: Booking, remind_at: datetime) -> bool:
        chat_id = booking.client.telegram_chat_id if booking.client else None
        if not chat_id:
            logger.info(f"Client of booking {booking.id} has no chat id, reminder skipped")
            return False
        return self.transport.send_message(chat_id, client_reminder_message(booking, remind_at))
