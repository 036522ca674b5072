# masterbook/models/__init__.py
from .base import Base
from .user import User
from .master import Master, MasterSettings
from .service import Service
from .availability import AvailabilityRule, AvailabilityWindow, AvailabilityExclusion, MasterBlock
from .booking import Booking, BookingStatus, BookingSource
from .reminder import BookingReminder
from .calendar_sync import CalendarSyncBinding, ExternalEventMapping

__all__ = [
    "Base",
    "User",
    "Master",
    "MasterSettings",
    "Service",
    "AvailabilityRule",
    "AvailabilityWindow",
    "AvailabilityExclusion",
    "MasterBlock",
    "Booking",
    "BookingStatus",
    "BookingSource",
    "BookingReminder",
    "CalendarSyncBinding",
    "ExternalEventMapping",
]
