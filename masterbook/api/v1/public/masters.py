# ============================================================================
# FILE: masterbook/api/v1/public/masters.py
# Public booking link: master profile, free slots, booking, calendar feed
# ============================================================================
import logging
from datetime import date
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import Response
from sqlalchemy.orm import Session

from masterbook.api.dependencies import get_current_user
from masterbook.config.database import get_db
from masterbook.models.user import User
from masterbook.schemas.booking import BookingCreateRequest
from masterbook.services.availability.availability_service import AvailabilityService
from masterbook.services.booking.booking_service import BookingService
from masterbook.services.booking.errors import ValidationFailed
from masterbook.services.calendar.ics_feed import IcsFeedService
from masterbook.services.catalog.catalog_service import CatalogService
from masterbook.services.master.master_service import MasterService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/masters")


@router.get("/{slug}")
def get_master_profile(slug: str, db: Session = Depends(get_db)):
    """Master profile with the services clients can book"""
    master = MasterService.get_by_slug(db, slug)
    profile = master.to_dict()
    profile["services"] = [s.to_dict() for s in CatalogService.list_services(db, master.id)]
    return profile


@router.get("/{slug}/slots")
def get_free_slots(
        slug: str,
        date_from: date,
        date_to: date,
        service_ids: List[UUID] = Query(..., min_length=1),
        db: Session = Depends(get_db)
):
    """Free start times for the selected services, inclusive local date range"""
    master = MasterService.get_by_slug(db, slug)
    slots = AvailabilityService.get_slots(db, master, service_ids, date_from, date_to)
    return {
        "master_id": str(master.id),
        "timezone": master.timezone,
        "slots": [slot.to_dict() for slot in slots],
    }


@router.post("/{slug}/bookings", status_code=status.HTTP_201_CREATED)
def create_booking(
        slug: str,
        request: BookingCreateRequest,
        current_user: User = Depends(get_current_user),
        db: Session = Depends(get_db)
):
    master = MasterService.get_by_slug(db, slug)
    if master.user_id == current_user.id:
        raise ValidationFailed("Masters cannot book their own services")

    booking = BookingService.create_booking(
        db,
        master=master,
        client=current_user,
        service_ids=request.resolved_service_ids,
        start_at=request.start_at,
        client_note=request.client_note,
    )
    return booking.to_dict()


@router.get("/{slug}/calendar.ics")
def get_calendar_feed(
        slug: str,
        token: Optional[str] = Query(None),
        db: Session = Depends(get_db)
):
    """Read-only iCalendar subscription for the master"""
    body = IcsFeedService.build_feed(db, slug, token)
    return Response(
        content=body,
        media_type="text/calendar; charset=utf-8",
        headers={"Content-Disposition": f'inline; filename="{slug}.ics"'}
    )
