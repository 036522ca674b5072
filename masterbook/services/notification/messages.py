# masterbook/services/notification/messages.py
"""Text of the messages sent to masters and clients"""
from datetime import datetime

from masterbook.models.booking import Booking
from masterbook.utils.time_windows import ensure_utc, get_zone

EVENT_TITLES = {
    "created": "New booking",
    "updated": "Booking updated",
    "canceled": "Booking canceled",
}


def format_local(instant: datetime, timezone_name: str) -> str:
    local = ensure_utc(instant).astimezone(get_zone(timezone_name or "UTC"))
    return local.strftime("%d.%m.%Y %H:%M")


def reminder_label(start_at: datetime, remind_at: datetime) -> str:
    """'in 24h' style label from the distance between reminder and start"""
    hours = max(1, round((ensure_utc(start_at) - ensure_utc(remind_at)).total_seconds() / 3600))
    if hours >= 24 and hours % 24 == 0:
        days = hours // 24
        return "tomorrow" if days == 1 else f"in {days} days"
    return f"in {hours}h"


def master_booking_message(booking: Booking, event_type: str) -> str:
    master = booking.master
    timezone_name = master.timezone if master else "UTC"
    lines = [
        EVENT_TITLES.get(event_type, "Booking updated"),
        f"Client: {booking.client.name if booking.client else 'unknown'}",
        f"Service: {booking.service.name if booking.service else 'service'}",
        f"Date and time: {format_local(booking.start_at, timezone_name)} ({timezone_name})",
        f"Status: {booking.status}",
    ]
    if booking.client_note:
        lines.append(f"Comment: {booking.client_note}")
    return "\n".join(lines)


def client_reminder_message(booking: Booking, remind_at: datetime) -> str:
    master = booking.master
    timezone_name = master.timezone if master else "UTC"
    return "\n".join([
        f"Reminder: your appointment is {reminder_label(booking.start_at, remind_at)}",
        f"Service: {booking.service.name if booking.service else 'service'}",
        f"Date and time: {format_local(booking.start_at, timezone_name)} ({timezone_name})",
        f"Master: {master.display_name if master else 'master'}",
    ])


def client_booking_message(booking: Booking, event_type: str) -> str:
    """Sent to the client when the master changes their booking"""
    master = booking.master
    timezone_name = master.timezone if master else "UTC"
    titles = {
        "confirmed": "Your booking is confirmed",
        "updated": "Your booking was moved",
        "canceled": "Your booking was canceled",
    }
    return "\n".join([
        titles.get(event_type, "Your booking was updated"),
        f"Service: {booking.service.name if booking.service else 'service'}",
        f"Date and time: {format_local(booking.start_at, timezone_name)} ({timezone_name})",
        f"Master: {master.display_name if master else 'master'}",
    ])
