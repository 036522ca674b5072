# masterbook/services/booking/events.py
"""Booking lifecycle events, published after the booking transaction commits"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from uuid import UUID


@dataclass(frozen=True)
class BookingEvent:
    booking_id: UUID
    master_id: UUID
    status: str
    actor: str = "client"  # "client" or "master"


@dataclass(frozen=True)
class BookingCreated(BookingEvent):
    """A booking created as pending, waiting for the master to confirm"""


@dataclass(frozen=True)
class BookingConfirmed(BookingEvent):
    """A booking became confirmed, either on creation or by the master"""
    newly_created: bool = False


@dataclass(frozen=True)
class BookingRescheduled(BookingEvent):
    previous_start_at: Optional[datetime] = None


@dataclass(frozen=True)
class BookingCanceled(BookingEvent):
    pass


@dataclass(frozen=True)
class BookingClosed(BookingEvent):
    """Completed or no-show"""
