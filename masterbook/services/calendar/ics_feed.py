# masterbook/services/calendar/ics_feed.py
"""Read-only iCalendar feed of a master's bookings (Apple Calendar subscription)"""
import hmac
import logging
from datetime import datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from masterbook.models.booking import Booking, BookingStatus
from masterbook.models.master import Master
from masterbook.services.master.master_service import MasterService
from masterbook.utils.time_windows import ensure_utc, utc_now

logger = logging.getLogger(__name__)

FEED_HISTORY_DAYS = 30
PRODID = "-//Masterbook//Master Feed//EN"


class FeedAccessDenied(Exception):
    pass


def ics_datetime(value: datetime) -> str:
    return ensure_utc(value).strftime("%Y%m%dT%H%M%SZ")


def escape_ics_text(text: Optional[str]) -> str:
    return (
        str(text or "")
        .replace("\r\n", "\n")
        .replace("\r", "\n")
        .replace("\\", "\\\\")
        .replace("\n", "\\n")
        .replace(",", "\\,")
        .replace(";", "\\;")
    )


def render_calendar(master: Master, bookings: Iterable[Booking], now: Optional[datetime] = None) -> str:
    stamp = ics_datetime(now or utc_now())
    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        f"PRODID:{PRODID}",
        "CALSCALE:GREGORIAN",
        "METHOD:PUBLISH",
        f"X-WR-CALNAME:{escape_ics_text(master.display_name + ' bookings')}",
        f"X-WR-TIMEZONE:{escape_ics_text(master.timezone or 'UTC')}",
    ]
    for booking in bookings:
        service_name = booking.service.name if booking.service else "Service"
        description = [f"Client: {booking.client.name if booking.client else 'unknown'}"]
        if booking.client_note:
            description.append(f"Client comment: {booking.client_note}")
        if booking.master_note:
            description.append(f"Master comment: {booking.master_note}")
        lines.extend([
            "BEGIN:VEVENT",
            f"UID:booking-{booking.id}@masterbook",
            f"DTSTAMP:{stamp}",
            f"DTSTART:{ics_datetime(booking.start_at)}",
            f"DTEND:{ics_datetime(booking.end_at)}",
            f"SUMMARY:{escape_ics_text('Booking: ' + service_name)}",
            f"DESCRIPTION:{escape_ics_text(chr(10).join(description))}",
            f"STATUS:{'TENTATIVE' if booking.status == BookingStatus.PENDING.value else 'CONFIRMED'}",
            "END:VEVENT",
        ])
    lines.extend(["END:VCALENDAR", ""])
    return "\r\n".join(lines)


class IcsFeedService:

    @staticmethod
    def build_feed(db: Session, slug: str, token: str, now: Optional[datetime] = None) -> str:
        """Feed for a master, if the feed is enabled and the token matches"""
        master = MasterService.get_by_slug(db, slug)
        row = MasterService.peek_settings(db, master.id)
        if row is None or not row.apple_calendar_enabled or not row.apple_calendar_token:
            raise FeedAccessDenied("Calendar feed is not enabled")
        if not token or not hmac.compare_digest(row.apple_calendar_token, token):
            raise FeedAccessDenied("Invalid calendar feed token")

        current = now or utc_now()
        bookings = db.query(Booking).filter(
            Booking.master_id == master.id,
            Booking.status != BookingStatus.CANCELED.value,
            Booking.start_at >= current - timedelta(days=FEED_HISTORY_DAYS)
        ).order_by(Booking.start_at.asc()).all()

        logger.info(f"Serving calendar feed for master {master.id} with {len(bookings)} events")
        return render_calendar(master, bookings, now=current)
