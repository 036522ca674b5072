# ============================================================================
# FILE: masterbook/api/v1/client/bookings.py
# The current user's own bookings
# ============================================================================
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from masterbook.api.dependencies import get_current_user
from masterbook.config.database import get_db
from masterbook.models.user import User
from masterbook.schemas.booking import RescheduleRequest
from masterbook.services.booking.booking_service import Actor, BookingService

router = APIRouter(prefix="/bookings")


@router.get("")
def list_my_bookings(
        upcoming: bool = False,
        current_user: User = Depends(get_current_user),
        db: Session = Depends(get_db)
):
    bookings = BookingService.list_client_bookings(db, current_user.id, upcoming_only=upcoming)
    return {"total": len(bookings), "bookings": [b.to_dict() for b in bookings]}


@router.patch("/{booking_id}/reschedule")
def reschedule_my_booking(
        booking_id: UUID,
        request: RescheduleRequest,
        current_user: User = Depends(get_current_user),
        db: Session = Depends(get_db)
):
    booking = BookingService.reschedule_booking(
        db, booking_id, request.new_start_at, Actor.client(current_user)
    )
    return booking.to_dict()


@router.patch("/{booking_id}/cancel")
def cancel_my_booking(
        booking_id: UUID,
        current_user: User = Depends(get_current_user),
        db: Session = Depends(get_db)
):
    booking = BookingService.cancel_booking(db, booking_id, Actor.client(current_user))
    return booking.to_dict()
