# ============================================================================
# FILE: masterbook/api/v1/dashboard/bookings.py
# Master-side booking management
# ============================================================================
from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from masterbook.api.dependencies import get_current_master
from masterbook.config.database import get_db
from masterbook.models.booking import BookingSource, BookingStatus
from masterbook.models.master import Master
from masterbook.models.user import User
from masterbook.schemas.booking import AdminBookingCreateRequest, BookingStatusUpdate, RescheduleRequest
from masterbook.services.booking.booking_service import Actor, BookingService

router = APIRouter(prefix="/bookings")


@router.get("")
def list_bookings(
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        status_filter: Optional[BookingStatus] = Query(None, alias="status"),
        skip: int = Query(0, ge=0),
        limit: int = Query(100, ge=1, le=500),
        master: Master = Depends(get_current_master),
        db: Session = Depends(get_db)
):
    """Bookings by local date range of the master"""
    bookings = BookingService.list_master_bookings(
        db,
        master,
        date_from=date_from,
        date_to=date_to,
        status=status_filter.value if status_filter else None,
        skip=skip,
        limit=limit,
    )
    return {"total": len(bookings), "bookings": [b.to_dict() for b in bookings]}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_booking_for_client(
        request: AdminBookingCreateRequest,
        master: Master = Depends(get_current_master),
        db: Session = Depends(get_db)
):
    """Booking entered by the master; notice, working hours and limits do not apply"""
    client = db.query(User).filter(User.id == request.client_id).first()
    if client is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Client not found")

    booking = BookingService.create_booking(
        db,
        master=master,
        client=client,
        service_ids=request.resolved_service_ids,
        start_at=request.start_at,
        client_note=request.client_note,
        source=BookingSource.ADMIN_CREATED.value,
        status=request.status.value,
        master_note=request.master_note,
    )
    return booking.to_dict()


@router.patch("/{booking_id}")
def update_booking(
        booking_id: UUID,
        request: BookingStatusUpdate,
        master: Master = Depends(get_current_master),
        db: Session = Depends(get_db)
):
    """Confirm, complete, mark no-show, cancel, or edit the private note"""
    booking = BookingService.update_booking_status(
        db,
        master,
        booking_id,
        status=request.status.value if request.status else None,
        master_note=request.master_note,
    )
    return booking.to_dict()


@router.patch("/{booking_id}/reschedule")
def reschedule_booking(
        booking_id: UUID,
        request: RescheduleRequest,
        master: Master = Depends(get_current_master),
        db: Session = Depends(get_db)
):
    booking = BookingService.reschedule_booking(db, booking_id, request.new_start_at, Actor.master(master))
    return booking.to_dict()
